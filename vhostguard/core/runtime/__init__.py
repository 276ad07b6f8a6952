"""
Runtime: resolución de rutas y contratos de estado real.
"""

from vhostguard.core.runtime.resolver import document_root, artifact_label
from vhostguard.core.runtime.state import StateDiff, DriftDetector

__all__ = ["document_root", "artifact_label", "StateDiff", "DriftDetector"]

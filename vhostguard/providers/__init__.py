"""
Providers: implementación nativa de FilesystemOps y detección de drift.
"""

from vhostguard.providers.posix import PosixFilesystemOps
from vhostguard.providers.drift import PosixDriftDetector

__all__ = ["PosixFilesystemOps", "PosixDriftDetector"]

"""
Diferencias entre estado deseado y real.

El core solo define la estructura y el protocolo; la lectura real del
filesystem la hace providers/drift.py.
"""

from typing import Any, List, Protocol

from vhostguard.core.model import StateModel


class StateDiff:
    """Diferencia entre estado deseado y real de una ruta"""
    def __init__(
        self,
        resource_id: str,
        field: str,
        desired: Any,
        actual: Any,
        severity: str = "warning"
    ):
        self.resource_id = resource_id
        self.field = field
        self.desired = desired
        self.actual = actual
        self.severity = severity  # "error", "warning", "info"

    def __repr__(self) -> str:
        return f"StateDiff({self.resource_id!r}, {self.field!r}, {self.desired!r} != {self.actual!r}, {self.severity})"


class DriftDetector(Protocol):
    """Protocolo: detecta drift entre el modelo y el árbol real."""
    def detect_drift(self, model: StateModel) -> List[StateDiff]:
        ...

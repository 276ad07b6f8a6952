"""
Contrato para las operaciones de filesystem e identidad.

El core no depende de ninguna implementación concreta.
"""

from vhostguard.core.infra.contracts import FilesystemOps, AclEntryView

__all__ = ["FilesystemOps", "AclEntryView"]

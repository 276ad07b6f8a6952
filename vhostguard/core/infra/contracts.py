"""
Contrato de operaciones de filesystem e identidad.

El core solo define la interfaz; la implementación nativa vive en
vhostguard/providers/posix.py. Todo método que muta recibe dry_run y
devuelve cuántas rutas cambió (o cambiaría).
"""

from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Tuple

from vhostguard.core.model import Identity


AclEntryView = Tuple[str, Optional[str], str]  # (tag, qualifier, perms) p. ej. ("user", "deploy", "r-x")


class FilesystemOps(Protocol):
    """Operaciones privilegiadas que el reconciliador necesita del sistema"""

    def lookup_identity(self, name: str) -> Optional[Identity]:
        """Identidad por nombre, o None si no existe."""
        ...

    def lookup_group(self, name: str) -> Optional[int]:
        """gid del grupo, o None si no existe."""
        ...

    def ensure_identity(self, name: str, home: str, shell: str, group: str, dry_run: bool = False) -> int:
        """Crea o ajusta la identidad (home, shell, grupo). 0 si ya estaba bien."""
        ...

    def acl_supported(self, path: Path, dry_run: bool = False) -> bool:
        """Sonda: las ACL funcionan sobre path."""
        ...

    def ensure_directory(self, path: Path, owner: str, group: str, mode: int, dry_run: bool = False) -> int:
        """install -d -m MODE -o OWNER -g GROUP path"""
        ...

    def make_dirs(self, path: Path, owner: str, group: str, mode: int, dry_run: bool = False) -> int:
        """mkdir -p; solo los directorios creados reciben dueño/modo."""
        ...

    def create_if_absent(
        self, path: Path, owner: str, group: str, mode: int, directory: bool, dry_run: bool = False
    ) -> int:
        """Crea path vacío si falta; nunca modifica uno existente."""
        ...

    def chown_recursive(
        self, path: Path, owner: str, group: str, exclude: Iterable[Path] = (), dry_run: bool = False
    ) -> int:
        ...

    def chmod_recursive(
        self,
        path: Path,
        dir_mode: Optional[int],
        file_mode: Optional[int],
        exclude: Iterable[Path] = (),
        recursive: bool = True,
        dry_run: bool = False,
    ) -> int:
        ...

    def set_acl(self, path: Path, user: str, perms: str, recursive: bool = False, dry_run: bool = False) -> int:
        ...

    def set_default_acl(
        self, path: Path, user: str, perms: str, recursive: bool = False, dry_run: bool = False
    ) -> int:
        ...

    def remove_acl(
        self, path: Path, user: str, exclude: Iterable[Path] = (), recursive: bool = False, dry_run: bool = False
    ) -> int:
        """Quita las entradas de acceso y por defecto que nombran a user."""
        ...

    def get_acl(self, path: Path, default: bool = False) -> List[AclEntryView]:
        ...

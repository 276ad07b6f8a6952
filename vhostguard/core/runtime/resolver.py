"""
Resolución de rutas de una invocación.

- document_root(): docroot explícito o /var/www/vhosts/<dominio>/httpdocs.
- artifact_label(): dominio, o basename del docroot si no hay dominio.

Siempre devuelve Path absolutos: las rutas relativas se resuelven contra el
cwd de la invocación, sin resolver symlinks. No escribe en disco.
"""

import os
from pathlib import Path
from typing import Optional


VHOSTS_BASE = Path("/var/www/vhosts")
DOCROOT_NAME = "httpdocs"


def document_root(
    domain: Optional[str] = None,
    vhost_root: Optional[Path] = None,
    vhosts_base: Path = VHOSTS_BASE,
) -> Path:
    """
    Docroot del sitio. vhost_root tiene prioridad sobre el dominio.

    Raises:
        ValueError si no hay ninguno de los dos
    """
    if vhost_root:
        return Path(os.path.abspath(vhost_root))
    if domain:
        return Path(os.path.abspath(vhosts_base)) / domain / DOCROOT_NAME
    raise ValueError("Indica un dominio o la ruta del docroot (vhost root)")


def artifact_label(domain: Optional[str], root: Path) -> str:
    return domain or Path(root).name

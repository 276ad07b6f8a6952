"""
Generador del script de reparación.

Serializa la misma lista de acciones que usa el reconciliador (plan_actions)
como bash independiente. Rutas e identidades van como datos literales
citados con shlex; no hay plantilla con sustitución de texto.
"""

import os
import shlex
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.markup import escape

from vhostguard.core.actions import plan_actions
from vhostguard.core.errors import ApplyFailed
from vhostguard.core.infra.contracts import FilesystemOps
from vhostguard.core.model import SCRIPTS_MODE, StateModel


ARTIFACT_PREFIX = "wp_two_user_repair"
ARTIFACT_MODE = 0o750
ARTIFACT_STAGE = "artifact"


@dataclass(frozen=True)
class ResolvedParams:
    """Parámetros resueltos en la corrida actual que fija el script"""
    label: str  # dominio, o basename del docroot si no hay dominio
    prefix: str = ARTIFACT_PREFIX
    mode: int = ARTIFACT_MODE


def artifact_path(model: StateModel, params: ResolvedParams) -> Path:
    return model.scripts_dir / f"{params.prefix}_{params.label}.sh"


def render_script(model: StateModel) -> str:
    """
    Script bash que reaplica todo desde cero, en el orden del modelo.

    Solo depende del modelo: mismos parámetros, mismo texto.
    """
    lines: List[str] = [
        "#!/usr/bin/env bash",
        "# Script de reparación generado por vhostguard. No editar: se regenera en cada corrida.",
        "# Reaplica dueños, permisos y ACL desde cero (no es un diff).",
        "set -euo pipefail",
        "",
        'die() { echo "ERROR: $*" >&2; exit 1; }',
        'require() { command -v "$1" >/dev/null 2>&1 || die "Falta: $1"; }',
        'require setfacl',
        'require getfacl',
        '[ "$(id -u)" -eq 0 ] || die "Ejecutar como root"',
    ]

    current_stage = None
    for action in plan_actions(model):
        if action.stage != current_stage:
            current_stage = action.stage
            lines.append("")
            lines.append(f"echo {shlex.quote('>> ' + current_stage)}")
        lines.extend(action.shell_lines())

    lines.append("")
    lines.append("echo '>> Listo.'")
    return "\n".join(lines) + "\n"


class ArtifactGenerator:
    """Escribe el script de reparación bajo <home compartido>/scripts/"""

    def __init__(self, ops: FilesystemOps, console: Optional[Console] = None):
        self.ops = ops
        self.console = console or Console()

    def generate(self, model: StateModel, params: ResolvedParams, dry_run: bool = False) -> Path:
        """
        Genera (o regenera) el script.

        Returns:
            Ruta del script; en dry-run no se escribe nada.

        Raises:
            ApplyFailed si no se puede escribir el script
        """
        path = artifact_path(model, params)
        content = render_script(model)

        if dry_run:
            self.console.print(f"[yellow]\\[dry-run][/yellow] crear {path} [dim](contenido omitido)[/dim]")
            return path

        try:
            self.ops.ensure_directory(path.parent, model.owner, model.group, SCRIPTS_MODE)
            self._write(path, content)
            self.ops.chown_recursive(path, model.owner, model.group)
            self.ops.chmod_recursive(path, None, params.mode, recursive=False)
        except OSError as e:
            self.console.print(f"  [red]✘[/red] Script de reparación: {escape(str(e))}")
            raise ApplyFailed(ARTIFACT_STAGE, str(path), e) from e
        self.console.print(f"[green]✔[/green] Script de reparación: {path}")
        return path

    def _write(self, path: Path, content: str) -> None:
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

"""
Reconciliador: lleva el árbol real al estado del modelo.

Precondiciones primero (sin mutar nada), luego la lista de plan_actions en
orden. Cada acción es idempotente; un fallo fatal aborta y la recuperación
es volver a correr.
"""

import errno
from dataclasses import dataclass, field
from typing import List, Optional

from rich.console import Console
from rich.markup import escape

from vhostguard.core.actions import Action, plan_actions
from vhostguard.core.errors import (
    ACLApplyTolerated,
    ACLUnsupported,
    ApplyFailed,
    GroupMissing,
    IdentityMissing,
    PathNotFound,
    VhostGuardError,
)
from vhostguard.core.infra.contracts import FilesystemOps
from vhostguard.core.model import Identity, StateModel


TOLERATED_ERRNOS = (errno.EACCES, errno.EPERM, errno.ENOTSUP, errno.EOPNOTSUPP)


@dataclass
class StepResult:
    action: Action
    changes: Optional[int] = 0
    tolerated: Optional[ACLApplyTolerated] = None
    note: Optional[str] = None


@dataclass
class ReconcileReport:
    """Acciones aplicadas (o planeadas en dry-run) y fallos tolerados"""
    dry_run: bool
    steps: List[StepResult] = field(default_factory=list)

    @property
    def changes(self) -> int:
        return sum(s.changes or 0 for s in self.steps)

    @property
    def tolerated(self) -> List[ACLApplyTolerated]:
        return [s.tolerated for s in self.steps if s.tolerated is not None]

    @property
    def is_noop(self) -> bool:
        return self.changes == 0

    @property
    def actions(self) -> List[Action]:
        return [s.action for s in self.steps]


def is_tolerable(action: Action, exc: BaseException) -> bool:
    """Solo los errores de permiso/soporte de ACL en clases que lo permiten"""
    return (
        action.is_acl
        and action.tolerated
        and isinstance(exc, OSError)
        and exc.errno in TOLERATED_ERRNOS
    )


class Reconciler:
    """Aplica un StateModel sobre el filesystem a través de FilesystemOps"""

    def __init__(self, ops: FilesystemOps, console: Optional[Console] = None):
        self.ops = ops
        self.console = console or Console()

    def check_preconditions(self, model: StateModel, dry_run: bool = False) -> Identity:
        """
        Verifica todo lo que debe existir antes de mutar.

        Raises:
            PathNotFound, IdentityMissing, GroupMissing, ACLUnsupported
        """
        if not model.document_root.is_dir():
            raise PathNotFound(model.document_root, "Docroot")
        if not model.shared_home.is_dir():
            raise PathNotFound(model.shared_home, "Home compartido")

        runtime = self.ops.lookup_identity(model.runtime)
        if runtime is None:
            raise IdentityMissing(model.runtime)
        if self.ops.lookup_group(model.group) is None:
            raise GroupMissing(model.group)

        if not self.ops.acl_supported(model.shared_home, dry_run=dry_run):
            raise ACLUnsupported(
                model.shared_home,
                "asegura que el FS esté montado con soporte de ACL e instala el paquete 'acl'",
            )
        return runtime

    def reconcile(self, model: StateModel, dry_run: bool = False) -> ReconcileReport:
        """
        Reconcilia el modelo.

        Args:
            model: Estado deseado
            dry_run: Si True, calcula y reporta sin ejecutar

        Returns:
            ReconcileReport con cada acción y las rutas que cambió

        Raises:
            PreconditionError antes de cualquier mutación; ApplyFailed si una
            acción falla de forma fatal.
        """
        self.check_preconditions(model, dry_run=dry_run)
        report = ReconcileReport(dry_run=dry_run)

        current_stage = None
        for action in plan_actions(model):
            if action.stage != current_stage:
                current_stage = action.stage
                self.console.print(f"\n[cyan]▶ {current_stage}[/cyan] [dim]{action.path}[/dim]")
            report.steps.append(self._run(action, dry_run))

        return report

    def _run(self, action: Action, dry_run: bool) -> StepResult:
        prefix = "[yellow]\\[dry-run][/yellow] " if dry_run else ""
        try:
            changes = action.run(self.ops, dry_run=dry_run)
        except (OSError, VhostGuardError) as e:
            if dry_run:
                # en dry-run nada es fatal: se informa y se sigue
                self.console.print(f"  {prefix}[yellow]⚠[/yellow] {action.describe()}: {escape(str(e))}")
                return StepResult(action, changes=None, note=str(e))
            if is_tolerable(action, e):
                tolerated = ACLApplyTolerated(action.path, e)
                self.console.print(f"  [yellow]⚠ NOTE:[/yellow] {escape(str(tolerated))}")
                return StepResult(action, changes=0, tolerated=tolerated)
            self.console.print(f"  [red]✘[/red] {action.describe()}: {escape(str(e))}")
            raise ApplyFailed(action.stage, f"{action.describe()} ({action.path})", e) from e

        if changes:
            self.console.print(f"  {prefix}[green]✔[/green] {action.describe()} [dim]({changes} cambio(s))[/dim]")
        else:
            self.console.print(f"  {prefix}[dim]= {action.describe()} (sin cambios)[/dim]")
        return StepResult(action, changes=changes)

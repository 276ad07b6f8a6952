#!/usr/bin/env python3
"""
CLI de vhostguard.

Solo compone comandos; la lógica vive en core y providers.
"""

import os
from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from vhostguard import __version__
from vhostguard.core.artifact import ArtifactGenerator, ResolvedParams, render_script
from vhostguard.core.actions import plan_actions
from vhostguard.core.config import HardenConfig, load_config
from vhostguard.core.errors import (
    ApplyFailed,
    ConfigError,
    IdentityMissing,
    PathNotFound,
    PreconditionError,
)
from vhostguard.core.model import StateModel
from vhostguard.core.reconciler import Reconciler, ReconcileReport
from vhostguard.providers.drift import PosixDriftDetector
from vhostguard.providers.posix import PosixFilesystemOps


app = typer.Typer(
    name="vhostguard",
    help="Modelo de dos usuarios para docroots web (dueño del código / usuario de runtime) con ACL",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()

EXIT_FAILED = 1
EXIT_PRECONDITION = 2


def make_ops() -> PosixFilesystemOps:
    return PosixFilesystemOps()


def require_root(console: Console) -> bool:
    """True si el proceso corre como root; si no, explica cómo ejecutarlo"""
    if os.geteuid() == 0:
        return True
    console.print("[red]✘ Se requieren permisos de root[/red]")
    console.print("[yellow]Ejecuta con sudo[/yellow]")
    return False


# Opciones compartidas ---------------------------------------------------------

DomainOpt = typer.Option(None, "--domain", "-p", help="Dominio (usa /var/www/vhosts/DOMINIO/httpdocs)")
VhostRootOpt = typer.Option(None, "--vhost-root", "--vhostroot", help="Ruta del docroot (si es relativa, se resuelve contra el directorio actual)")
RuntimeOpt = typer.Option(None, "--runtime-user", "-r", help="Usuario de la suscripción (ejecuta PHP-FPM)")
OwnerOpt = typer.Option(None, "--owner-user", "--deploy-user", "-o", help="Usuario de despliegue, dueño del código")
WritableOpt = typer.Option(
    None, "--writable", "-w",
    help="Directorio escribible relativo al docroot (repetible o separado por espacios)",
)
GroupOpt = typer.Option(None, "--group", "-g", help="Grupo compartido (por defecto psacln)")
ConfigOpt = typer.Option(None, "--config", "-c", help="Archivo YAML con la configuración del sitio")


def _load(
    config_file: Optional[Path],
    domain: Optional[str],
    vhost_root: Optional[Path],
    runtime_user: Optional[str],
    owner_user: Optional[str],
    writable: Optional[List[str]],
    group: Optional[str],
) -> HardenConfig:
    env_file = Path.cwd() / ".env"
    if env_file.exists():
        load_dotenv(env_file)
    return load_config(config_file, overrides={
        "domain": domain,
        "vhost_root": vhost_root,
        "runtime_user": runtime_user,
        "owner_user": owner_user,
        "writable": writable,
        "group": group,
    })


def _resolve_model(config: HardenConfig, ops: PosixFilesystemOps) -> StateModel:
    """El home compartido sale de la cuenta del usuario de runtime"""
    runtime = ops.lookup_identity(config.runtime_user)
    if runtime is None:
        raise IdentityMissing(config.runtime_user)
    if not runtime.home or not Path(runtime.home).is_dir():
        raise PathNotFound(runtime.home or "(vacío)", f"Home de '{config.runtime_user}'")
    return config.build_model(Path(runtime.home))


def _show_plan(config: HardenConfig, model: StateModel, dry_run: bool) -> None:
    console.print(Panel.fit(
        f"[bold cyan]Plan[/bold cyan]\n"
        f"[dim]Dominio:[/dim]        {config.domain or '(no indicado; se usa vhost root)'}\n"
        f"[dim]Docroot:[/dim]        {model.document_root}\n"
        f"[dim]Usuario runtime:[/dim] {model.runtime}\n"
        f"[dim]Home compartido:[/dim] {model.shared_home}\n"
        f"[dim]Dueño del código:[/dim] {model.owner}\n"
        f"[dim]Grupo:[/dim]          {model.group}\n"
        f"[dim]Escribibles:[/dim]    {' '.join(model.writable) or '(ninguno)'}\n"
        f"[dim]Dry-run:[/dim]        {'sí' if dry_run else 'no'}",
        border_style="cyan"
    ))


def _show_report(report: ReconcileReport) -> None:
    table = Table(title="Resumen", show_header=True, header_style="bold cyan")
    table.add_column("Etapa", style="cyan")
    table.add_column("Acción", style="white")
    table.add_column("Cambios", justify="right")
    for step in report.steps:
        if step.tolerated is not None:
            changes = "[yellow]tolerado[/yellow]"
        elif step.changes is None:
            changes = "[yellow]?[/yellow]"
        else:
            changes = str(step.changes) if step.changes else "[dim]0[/dim]"
        table.add_row(step.action.stage, step.action.describe(), changes)
    console.print(table)
    for tolerated in report.tolerated:
        console.print(f"[yellow]⚠ {escape(str(tolerated))}[/yellow]")


def _fail(e: Exception) -> None:
    code = EXIT_PRECONDITION if isinstance(e, (ConfigError, PreconditionError)) else EXIT_FAILED
    console.print(f"[red]✘ {escape(str(e))}[/red]")
    if isinstance(e, ApplyFailed):
        console.print(f"[dim]Etapa en curso: {e.path_class}. Corrige la causa y vuelve a ejecutar.[/dim]")
    raise typer.Exit(code=code)


@app.command()
def apply(
    domain: Optional[str] = DomainOpt,
    vhost_root: Optional[Path] = VhostRootOpt,
    runtime_user: Optional[str] = RuntimeOpt,
    owner_user: Optional[str] = OwnerOpt,
    writable: Optional[List[str]] = WritableOpt,
    group: Optional[str] = GroupOpt,
    config_file: Optional[Path] = ConfigOpt,
    dry_run: bool = typer.Option(False, "--dry-run", help="Muestra las acciones sin hacer cambios"),
):
    """
    Aplica el modelo de dos usuarios y genera el script de reparación.

    Ejemplos:
        sudo vhostguard apply -p example.com -r site_runtime -o site_owner
        sudo vhostguard apply --vhost-root /srv/www/httpdocs -r rt -o dev -w "wp-content/uploads"
        vhostguard apply -p example.com -r site_runtime -o site_owner --dry-run
    """
    if not dry_run and not require_root(console):
        raise typer.Exit(code=EXIT_FAILED)

    ops = make_ops()
    try:
        config = _load(config_file, domain, vhost_root, runtime_user, owner_user, writable, group)
        model = _resolve_model(config, ops)
        _show_plan(config, model, dry_run)
        report = Reconciler(ops, console).reconcile(model, dry_run=dry_run)
        params = ResolvedParams(label=config.label, prefix=config.artifact_prefix)
        repair = ArtifactGenerator(ops, console).generate(model, params, dry_run=dry_run)
    except (ConfigError, PreconditionError, ApplyFailed) as e:
        _fail(e)
        return

    console.print()
    _show_report(report)
    if dry_run:
        console.print(f"\n[yellow]🔍 Dry-run: {report.changes} cambio(s) pendientes; no se modificó nada[/yellow]")
        return
    console.print(f"\n[green]✅ Completado[/green] [dim]({report.changes} cambio(s))[/dim]")
    console.print(f"Script de reparación: {repair}")
    console.print(f"[dim]Tip: vuelve a ejecutarlo como root tras cualquier \"reparación\" del panel: sudo bash {repair}[/dim]")


@app.command()
def plan(
    domain: Optional[str] = DomainOpt,
    vhost_root: Optional[Path] = VhostRootOpt,
    runtime_user: Optional[str] = RuntimeOpt,
    owner_user: Optional[str] = OwnerOpt,
    writable: Optional[List[str]] = WritableOpt,
    group: Optional[str] = GroupOpt,
    config_file: Optional[Path] = ConfigOpt,
):
    """
    Lista las acciones que aplicaría 'apply', en orden, sin tocar nada.
    """
    ops = make_ops()
    try:
        config = _load(config_file, domain, vhost_root, runtime_user, owner_user, writable, group)
        model = _resolve_model(config, ops)
    except (ConfigError, PreconditionError) as e:
        _fail(e)
        return

    table = Table(title="Acciones planificadas", show_header=True, header_style="bold cyan")
    table.add_column("#", style="cyan", justify="right", width=4)
    table.add_column("Etapa", style="cyan")
    table.add_column("Ruta", style="white")
    table.add_column("Acción", style="dim")
    for i, action in enumerate(plan_actions(model), 1):
        table.add_row(str(i), action.stage, str(action.path), action.describe())
    console.print(table)


@app.command("repair-script")
def repair_script(
    domain: Optional[str] = DomainOpt,
    vhost_root: Optional[Path] = VhostRootOpt,
    runtime_user: Optional[str] = RuntimeOpt,
    owner_user: Optional[str] = OwnerOpt,
    writable: Optional[List[str]] = WritableOpt,
    group: Optional[str] = GroupOpt,
    config_file: Optional[Path] = ConfigOpt,
    show: bool = typer.Option(False, "--print", help="Imprime el script en stdout en lugar de escribirlo"),
):
    """
    (Re)genera solo el script de reparación en <home compartido>/scripts/.
    """
    ops = make_ops()
    try:
        config = _load(config_file, domain, vhost_root, runtime_user, owner_user, writable, group)
        model = _resolve_model(config, ops)
        params = ResolvedParams(label=config.label, prefix=config.artifact_prefix)
        if show:
            typer.echo(render_script(model), nl=False)
            return
        if not require_root(console):
            raise typer.Exit(code=EXIT_FAILED)
        ArtifactGenerator(ops, console).generate(model, params)
    except (ConfigError, PreconditionError, ApplyFailed, OSError) as e:
        _fail(e)


@app.command()
def verify(
    domain: Optional[str] = DomainOpt,
    vhost_root: Optional[Path] = VhostRootOpt,
    runtime_user: Optional[str] = RuntimeOpt,
    owner_user: Optional[str] = OwnerOpt,
    writable: Optional[List[str]] = WritableOpt,
    group: Optional[str] = GroupOpt,
    config_file: Optional[Path] = ConfigOpt,
):
    """
    Detecta drift entre el modelo y el árbol real (solo lectura).

    Sale con código 1 si hay diferencias de severidad error o warning.
    """
    ops = make_ops()
    try:
        config = _load(config_file, domain, vhost_root, runtime_user, owner_user, writable, group)
        model = _resolve_model(config, ops)
    except (ConfigError, PreconditionError) as e:
        _fail(e)
        return

    diffs = PosixDriftDetector(ops).detect_drift(model)
    if not diffs:
        console.print("[green]✅ Sin drift. El árbol cumple el modelo.[/green]")
        return

    table = Table(title="Drift detectado", show_header=True, header_style="bold cyan")
    table.add_column("Ruta", style="white")
    table.add_column("Campo", style="cyan")
    table.add_column("Deseado", style="green")
    table.add_column("Real", style="red")
    table.add_column("Severidad")
    styles = {"error": "[red]error[/red]", "warning": "[yellow]warning[/yellow]", "info": "[dim]info[/dim]"}
    for d in diffs:
        table.add_row(str(d.resource_id), d.field, str(d.desired), str(d.actual), styles.get(d.severity, d.severity))
    console.print(table)

    blocking = [d for d in diffs if d.severity in ("error", "warning")]
    if blocking:
        console.print(f"\n[yellow]⚠️ {len(blocking)} diferencia(s). Ejecuta 'vhostguard apply' o el script de reparación.[/yellow]")
        raise typer.Exit(code=EXIT_FAILED)


@app.command()
def version():
    """Muestra la versión de vhostguard"""
    console.print(Panel.fit(
        "[bold cyan]vhostguard[/bold cyan]\n"
        "[dim]Modelo de dos usuarios con ACL para docroots web[/dim]\n\n"
        f"[bold]Versión:[/bold] {__version__}",
        border_style="cyan"
    ))


def main():
    app()


if __name__ == "__main__":
    main()

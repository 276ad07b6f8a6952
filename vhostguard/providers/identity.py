"""
Gestión de cuentas: el único colaborador externo (useradd / usermod).

Las consultas usan pwd/grp directamente; solo crear o ajustar cuentas
ejecuta comandos del sistema.
"""

import grp
import pwd
import subprocess
from pathlib import Path
from typing import List, Optional

from vhostguard.core.errors import VhostGuardError
from vhostguard.core.model import Identity


class CommandFailed(VhostGuardError):
    """Un comando del sistema terminó con error"""

    def __init__(self, command: List[str], stderr: str = ""):
        msg = f"Falló: {' '.join(command)}"
        if stderr:
            msg += f" ({stderr.strip()})"
        super().__init__(msg)
        self.command = command
        self.stderr = stderr


def run_command(
    command: list,
    cwd: Optional[Path] = None,
    timeout: int = 30,
) -> tuple[bool, str, str]:
    """
    Ejecuta un comando del sistema

    Returns:
        Tuple (success, stdout, stderr)
    """
    try:
        result = subprocess.run(
            command,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False
        )
        return result.returncode == 0, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return False, "", "Timeout"
    except FileNotFoundError:
        return False, "", f"Comando no encontrado: {command[0]}"


def lookup_identity(name: str) -> Optional[Identity]:
    """Identidad desde la base de cuentas, con sus grupos (primario incluido)"""
    try:
        pw = pwd.getpwnam(name)
    except KeyError:
        return None
    groups = []
    try:
        groups.append(grp.getgrgid(pw.pw_gid).gr_name)
    except KeyError:
        pass
    for g in grp.getgrall():
        if name in g.gr_mem and g.gr_name not in groups:
            groups.append(g.gr_name)
    return Identity(
        name=pw.pw_name,
        uid=pw.pw_uid,
        gid=pw.pw_gid,
        home=pw.pw_dir,
        shell=pw.pw_shell,
        groups=tuple(groups),
    )


def lookup_group(name: str) -> Optional[int]:
    try:
        return grp.getgrnam(name).gr_gid
    except KeyError:
        return None


def identity_commands(current: Optional[Identity], name: str, home: str, shell: str, group: str) -> List[List[str]]:
    """
    Comandos necesarios para que la cuenta tenga home, shell y grupo.

    Lista vacía si ya está correcta.
    """
    if current is None:
        return [["useradd", "-M", "-d", home, "-s", shell, "-g", group, name]]
    commands = []
    if current.home != home:
        commands.append(["usermod", "-d", home, name])
    if current.shell != shell:
        commands.append(["usermod", "-s", shell, name])
    if group not in current.groups:
        commands.append(["usermod", "-aG", group, name])
    return commands


def ensure_identity(name: str, home: str, shell: str, group: str, dry_run: bool = False) -> int:
    commands = identity_commands(lookup_identity(name), name, home, shell, group)
    if dry_run:
        return len(commands)
    for command in commands:
        success, _, stderr = run_command(command)
        if not success:
            raise CommandFailed(command, stderr)
    return len(commands)

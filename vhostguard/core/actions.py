"""
Acciones primitivas de reconciliación.

Cada acción sabe ejecutarse contra FilesystemOps (run) y serializarse como
líneas de bash con argumentos literales (shell_lines). El reconciliador y el
generador del script de reparación consumen la MISMA lista (plan_actions).
"""

import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from vhostguard.core.infra.contracts import FilesystemOps
from vhostguard.core.model import (
    CODE_DIR_MODE,
    AclGrant,
    CreatePolicy,
    PathClass,
    StateModel,
)


IDENTITY_STAGE = "identity"


def _q(value) -> str:
    return shlex.quote(str(value))


def _chmod_mode(mode: int) -> str:
    # 5 dígitos: GNU chmod conserva setgid en directorios con modos de 4 dígitos
    return f"{mode:05o}"


def _install_mode(mode: int) -> str:
    return f"{mode:04o}"


def _find_pattern(path: Path) -> str:
    """Escapa metacaracteres glob para usar una ruta literal en find -path."""
    out = []
    for ch in str(path):
        if ch in "*?[]\\":
            out.append("\\")
        out.append(ch)
    return "".join(out)


def _find_prefix(path: Path, exclude: Tuple[Path, ...]) -> List[str]:
    """find -H PATH [\\( -path E1 -o -path E2 \\) -prune -o]

    -H sigue PATH si es un symlink (p. ej. uploads montado en NFS), igual que
    el recorrido nativo; los symlinks internos no se siguen.
    """
    argv = ["find", "-H", str(path)]
    if exclude:
        argv.append("(")
        for i, ex in enumerate(exclude):
            if i:
                argv.append("-o")
            argv += ["-path", _find_pattern(ex)]
        argv += [")", "-prune", "-o"]
    return argv


def _acl_spec(grant: AclGrant) -> str:
    prefix = "d:" if grant.default else ""
    return f"{prefix}u:{grant.user}:{grant.perms}"


class Action(ABC):
    """Acción primitiva; subclases son dataclasses inmutables"""

    stage: str
    path: Path
    is_acl: bool = False
    tolerated: bool = False

    @abstractmethod
    def run(self, ops: FilesystemOps, dry_run: bool = False) -> int:
        """Ejecuta (o evalúa en dry-run) y devuelve el número de rutas cambiadas"""
        pass

    @abstractmethod
    def describe(self) -> str:
        pass

    @abstractmethod
    def shell_lines(self) -> List[str]:
        pass


@dataclass(frozen=True)
class EnsureIdentity(Action):
    stage: str
    path: Path  # home compartido
    name: str
    shell: str
    group: str

    def run(self, ops: FilesystemOps, dry_run: bool = False) -> int:
        return ops.ensure_identity(self.name, str(self.path), self.shell, self.group, dry_run=dry_run)

    def describe(self) -> str:
        return f"Asegurar usuario {self.name} (home={self.path}, shell={self.shell}, grupo={self.group})"

    def shell_lines(self) -> List[str]:
        # el script no gestiona cuentas: solo verifica que sigan existiendo
        return [
            f"id -u {_q(self.name)} >/dev/null 2>&1 || die {_q('Falta el usuario ' + self.name)}",
            f"getent group {_q(self.group)} >/dev/null 2>&1 || die {_q('Falta el grupo ' + self.group)}",
        ]


@dataclass(frozen=True)
class EnsureDirectory(Action):
    stage: str
    path: Path
    owner: str
    group: str
    mode: int

    def run(self, ops: FilesystemOps, dry_run: bool = False) -> int:
        return ops.ensure_directory(self.path, self.owner, self.group, self.mode, dry_run=dry_run)

    def describe(self) -> str:
        return f"Directorio {self.owner}:{self.group} {_install_mode(self.mode)}"

    def shell_lines(self) -> List[str]:
        argv = ["install", "-d", "-m", _install_mode(self.mode), "-o", self.owner, "-g", self.group, str(self.path)]
        return [shlex.join(argv)]


@dataclass(frozen=True)
class MakeDirs(Action):
    stage: str
    path: Path
    base: Path
    owner: str
    group: str
    mode: int = CODE_DIR_MODE

    def run(self, ops: FilesystemOps, dry_run: bool = False) -> int:
        return ops.make_dirs(self.path, self.owner, self.group, self.mode, dry_run=dry_run)

    def describe(self) -> str:
        return f"Crear si falta (intermedios {self.owner}:{self.group} {_install_mode(self.mode)})"

    def shell_lines(self) -> List[str]:
        chain: List[Path] = []
        current = self.path
        while current != self.base and current != current.parent:
            chain.append(current)
            current = current.parent
        lines = []
        for directory in reversed(chain):
            argv = ["install", "-d", "-m", _install_mode(self.mode), "-o", self.owner, "-g", self.group, str(directory)]
            lines.append(f"[ -d {_q(directory)} ] || {shlex.join(argv)}")
        return lines


@dataclass(frozen=True)
class CreateIfAbsent(Action):
    stage: str
    path: Path
    owner: str
    group: str
    mode: int
    directory: bool

    def run(self, ops: FilesystemOps, dry_run: bool = False) -> int:
        return ops.create_if_absent(
            self.path, self.owner, self.group, self.mode, directory=self.directory, dry_run=dry_run
        )

    def describe(self) -> str:
        what = "directorio" if self.directory else "archivo vacío"
        return f"Crear {what} si falta ({self.owner}:{self.group} {_install_mode(self.mode)})"

    def shell_lines(self) -> List[str]:
        argv = ["install"]
        if self.directory:
            argv.append("-d")
        argv += ["-m", _install_mode(self.mode), "-o", self.owner, "-g", self.group]
        if not self.directory:
            argv.append("/dev/null")
        argv.append(str(self.path))
        return [f"[ -e {_q(self.path)} ] || {shlex.join(argv)}"]


@dataclass(frozen=True)
class ChownRecursive(Action):
    stage: str
    path: Path
    owner: str
    group: str
    exclude: Tuple[Path, ...] = ()

    def run(self, ops: FilesystemOps, dry_run: bool = False) -> int:
        return ops.chown_recursive(self.path, self.owner, self.group, exclude=self.exclude, dry_run=dry_run)

    def describe(self) -> str:
        return f"Dueño {self.owner}:{self.group} (recursivo)"

    def shell_lines(self) -> List[str]:
        owner = f"{self.owner}:{self.group}"
        if not self.exclude:
            return [shlex.join(["chown", "-R", "-H", owner, str(self.path)])]
        argv = _find_prefix(self.path, self.exclude) + ["-exec", "chown", "-h", owner, "{}", "+"]
        return [shlex.join(argv)]


@dataclass(frozen=True)
class ChmodRecursive(Action):
    stage: str
    path: Path
    dir_mode: Optional[int]
    file_mode: Optional[int]
    exclude: Tuple[Path, ...] = ()

    def run(self, ops: FilesystemOps, dry_run: bool = False) -> int:
        return ops.chmod_recursive(
            self.path, self.dir_mode, self.file_mode, exclude=self.exclude, dry_run=dry_run
        )

    def describe(self) -> str:
        parts = []
        if self.dir_mode is not None:
            parts.append(f"dirs {_install_mode(self.dir_mode)}")
        if self.file_mode is not None:
            parts.append(f"archivos {_install_mode(self.file_mode)}")
        return "Permisos " + ", ".join(parts) + " (recursivo)"

    def shell_lines(self) -> List[str]:
        lines = []
        for kind, mode in (("d", self.dir_mode), ("f", self.file_mode)):
            if mode is None:
                continue
            argv = _find_prefix(self.path, self.exclude) + [
                "-type", kind, "-exec", "chmod", _chmod_mode(mode), "{}", "+"
            ]
            lines.append(shlex.join(argv))
        return lines


@dataclass(frozen=True)
class SetAcl(Action):
    stage: str
    path: Path
    grants: Tuple[AclGrant, ...]
    recursive: bool = False
    tolerated: bool = False
    is_acl: bool = True

    def run(self, ops: FilesystemOps, dry_run: bool = False) -> int:
        changed = 0
        for grant in self.grants:
            if grant.default:
                changed += ops.set_default_acl(
                    self.path, grant.user, grant.perms, recursive=self.recursive, dry_run=dry_run
                )
            else:
                changed += ops.set_acl(self.path, grant.user, grant.perms, recursive=self.recursive, dry_run=dry_run)
        return changed

    def describe(self) -> str:
        specs = " ".join(_acl_spec(g) for g in self.grants)
        suffix = " (recursivo)" if self.recursive else ""
        return f"ACL {specs}{suffix}"

    def shell_lines(self) -> List[str]:
        argv = ["setfacl"]
        if self.recursive:
            argv.append("-R")
        for grant in self.grants:
            argv += ["-m", _acl_spec(grant)]
        argv.append(str(self.path))
        line = shlex.join(argv)
        if self.tolerated:
            note = f"NOTE: setfacl falló en {self.path} (probablemente NFS). Se continúa con 2775 + grupo."
            line += f" || echo {_q(note)}"
        return [line]


@dataclass(frozen=True)
class RemoveAcl(Action):
    stage: str
    path: Path
    user: str
    exclude: Tuple[Path, ...] = ()
    recursive: bool = True
    is_acl: bool = True

    def run(self, ops: FilesystemOps, dry_run: bool = False) -> int:
        return ops.remove_acl(self.path, self.user, exclude=self.exclude, recursive=self.recursive, dry_run=dry_run)

    def describe(self) -> str:
        return f"Quitar ACL de {self.user} (acceso y por defecto)"

    def shell_lines(self) -> List[str]:
        prefix = _find_prefix(self.path, self.exclude)
        return [
            shlex.join(prefix + ["-type", "d", "-exec", "setfacl", "-x", f"u:{self.user}", "-x", f"d:u:{self.user}", "{}", "+"]),
            shlex.join(prefix + ["-type", "f", "-exec", "setfacl", "-x", f"u:{self.user}", "{}", "+"]),
        ]


def _class_actions(pc: PathClass, model: StateModel) -> List[Action]:
    stage = pc.kind.value
    actions: List[Action] = []

    if pc.create in (CreatePolicy.DIR_IF_ABSENT, CreatePolicy.FILE_IF_ABSENT):
        directory = pc.create == CreatePolicy.DIR_IF_ABSENT
        mode = pc.dir_mode if directory else pc.file_mode
        return [CreateIfAbsent(stage, pc.path, pc.owner, pc.group, mode, directory)]

    if pc.create == CreatePolicy.DIRECTORY:
        actions.append(EnsureDirectory(stage, pc.path, pc.owner, pc.group, pc.dir_mode))
    elif pc.create == CreatePolicy.PARENTS:
        actions.append(MakeDirs(stage, pc.path, model.document_root, pc.owner, pc.group))

    if pc.recursive and pc.owner:
        actions.append(ChownRecursive(stage, pc.path, pc.owner, pc.group, pc.exclude))
    # quitar ACL antes de chmod: al desaparecer la máscara los bits de grupo vuelven a GROUP_OBJ
    for user in pc.revoke_acl_users:
        actions.append(RemoveAcl(stage, pc.path, user, pc.exclude, recursive=pc.recursive))
    if pc.recursive and (pc.dir_mode is not None or pc.file_mode is not None):
        actions.append(ChmodRecursive(stage, pc.path, pc.dir_mode, pc.file_mode, pc.exclude))
    if pc.acl:
        actions.append(SetAcl(stage, pc.path, pc.acl, recursive=pc.recursive, tolerated=pc.acl_tolerated))
    return actions


def plan_actions(model: StateModel) -> List[Action]:
    """
    Lista ordenada de acciones para el modelo.

    Primero la identidad del dueño del código; luego cada PathClass en el orden
    del modelo.
    """
    actions: List[Action] = [
        EnsureIdentity(IDENTITY_STAGE, model.shared_home, model.owner, model.shell, model.group)
    ]
    for pc in model.classes:
        actions.extend(_class_actions(pc, model))
    return actions

"""
Modelo de estado: clases de rutas y su estado deseado.

Lógica pura: entrada = docroot, home compartido, identidades y rutas escribibles;
salida = lista ordenada de PathClass. No toca el filesystem.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional, Tuple


DEFAULT_GROUP = "psacln"
DEFAULT_SHELL = "/bin/bash"
DEFAULT_WRITABLE = ("wp-content/uploads", "wp-content/cache")
DEFAULT_DOT_DIRS = (".local", ".nodenv", ".phpenv")
DEFAULT_PROFILE = ".bash_profile"
SCRIPTS_DIR_NAME = "scripts"

CODE_DIR_MODE = 0o755
CODE_FILE_MODE = 0o644
WRITABLE_MODE = 0o2775
SCRIPTS_MODE = 0o755
DOT_DIR_MODE = 0o700
DOT_FILE_MODE = 0o644


class PathClassKind(str, Enum):
    """Clase de ruta, en el orden en que se aplica"""
    SHARED_HOME_ROOT = "shared_home_root"
    SCRIPTS_DIR = "scripts_dir"
    DOT_RESOURCE = "dot_resource"
    CODE_TREE = "code_tree"
    WRITABLE_DIR = "writable_dir"


class CreatePolicy(str, Enum):
    NEVER = "never"
    DIRECTORY = "directory"  # se crea si falta y luego se fuerza dueño/modo
    PARENTS = "parents"  # mkdir -p; los intermedios reciben el estado de CodeTree
    DIR_IF_ABSENT = "dir_if_absent"  # solo si falta; nunca se toca si existe
    FILE_IF_ABSENT = "file_if_absent"


@dataclass(frozen=True)
class Identity:
    """Principal resuelto una vez por invocación"""
    name: str
    uid: Optional[int] = None
    gid: Optional[int] = None
    home: Optional[str] = None
    shell: Optional[str] = None
    groups: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AclGrant:
    """Entrada ACL de usuario: perms en notación setfacl (r, w, x, X)"""
    user: str
    perms: str
    default: bool = False


@dataclass(frozen=True)
class PathClass:
    kind: PathClassKind
    path: Path
    owner: Optional[str] = None
    group: Optional[str] = None
    dir_mode: Optional[int] = None
    file_mode: Optional[int] = None
    recursive: bool = False
    create: CreatePolicy = CreatePolicy.NEVER
    acl: Tuple[AclGrant, ...] = ()
    revoke_acl_users: Tuple[str, ...] = ()
    exclude: Tuple[Path, ...] = ()
    acl_tolerated: bool = False

    @property
    def label(self) -> str:
        return f"{self.kind.value}:{self.path}"


@dataclass(frozen=True)
class StateModel:
    """Estado deseado completo de una invocación"""
    document_root: Path
    shared_home: Path
    owner: str
    runtime: str
    group: str
    shell: str
    writable: Tuple[str, ...]
    classes: Tuple[PathClass, ...] = field(default_factory=tuple)

    def of_kind(self, kind: PathClassKind) -> List[PathClass]:
        return [pc for pc in self.classes if pc.kind == kind]

    @property
    def scripts_dir(self) -> Path:
        return self.of_kind(PathClassKind.SCRIPTS_DIR)[0].path

    @property
    def writable_paths(self) -> List[Path]:
        return [pc.path for pc in self.of_kind(PathClassKind.WRITABLE_DIR)]


def normalize_writable(paths: Iterable[str]) -> Tuple[str, ...]:
    """
    Normaliza rutas escribibles relativas al docroot.

    Rechaza rutas absolutas o con '..'; elimina duplicados manteniendo el orden.
    """
    result: List[str] = []
    for raw in paths:
        raw = (raw or "").strip()
        if not raw:
            continue
        pure = PurePosixPath(raw)
        if pure.is_absolute():
            raise ValueError(f"La ruta escribible debe ser relativa: {raw}")
        if ".." in pure.parts:
            raise ValueError(f"La ruta escribible no puede salir del docroot: {raw}")
        norm = str(pure)
        if norm == ".":
            raise ValueError("La ruta escribible no puede ser el docroot completo")
        if norm not in result:
            result.append(norm)
    return tuple(result)


def build_model(
    document_root: Path,
    shared_home: Path,
    owner: str,
    runtime: str,
    writable: Iterable[str] = DEFAULT_WRITABLE,
    group: str = DEFAULT_GROUP,
    shell: str = DEFAULT_SHELL,
    dot_dirs: Iterable[str] = DEFAULT_DOT_DIRS,
    profile_file: str = DEFAULT_PROFILE,
    scripts_dir_name: str = SCRIPTS_DIR_NAME,
) -> StateModel:
    """
    Construye el modelo ordenado:
    SharedHomeRoot -> ScriptsDir -> DotResource(s) -> CodeTree -> WritableDir(s).

    CodeTree excluye los subárboles escribibles; esos los gobierna su propia
    clase, que se aplica después.
    """
    document_root = Path(document_root)
    shared_home = Path(shared_home)
    rel_writable = normalize_writable(writable)
    writable_abs = tuple(document_root / rel for rel in rel_writable)

    classes: List[PathClass] = [
        PathClass(
            kind=PathClassKind.SHARED_HOME_ROOT,
            path=shared_home,
            acl=(AclGrant(owner, "rx"), AclGrant(owner, "rx", default=True)),
        ),
        PathClass(
            kind=PathClassKind.SCRIPTS_DIR,
            path=shared_home / scripts_dir_name,
            owner=owner,
            group=group,
            dir_mode=SCRIPTS_MODE,
            create=CreatePolicy.DIRECTORY,
        ),
    ]

    for name in dot_dirs:
        classes.append(PathClass(
            kind=PathClassKind.DOT_RESOURCE,
            path=shared_home / name,
            owner=owner,
            group=group,
            dir_mode=DOT_DIR_MODE,
            create=CreatePolicy.DIR_IF_ABSENT,
        ))
    if profile_file:
        classes.append(PathClass(
            kind=PathClassKind.DOT_RESOURCE,
            path=shared_home / profile_file,
            owner=owner,
            group=group,
            file_mode=DOT_FILE_MODE,
            create=CreatePolicy.FILE_IF_ABSENT,
        ))

    classes.append(PathClass(
        kind=PathClassKind.CODE_TREE,
        path=document_root,
        owner=owner,
        group=group,
        dir_mode=CODE_DIR_MODE,
        file_mode=CODE_FILE_MODE,
        recursive=True,
        revoke_acl_users=(runtime,),
        exclude=writable_abs,
    ))

    for path in writable_abs:
        classes.append(PathClass(
            kind=PathClassKind.WRITABLE_DIR,
            path=path,
            owner=owner,
            group=group,
            dir_mode=WRITABLE_MODE,
            file_mode=WRITABLE_MODE,
            recursive=True,
            create=CreatePolicy.PARENTS,
            acl=(AclGrant(runtime, "rwX"), AclGrant(runtime, "rwX", default=True)),
            acl_tolerated=True,
        ))

    return StateModel(
        document_root=document_root,
        shared_home=shared_home,
        owner=owner,
        runtime=runtime,
        group=group,
        shell=shell,
        writable=rel_writable,
        classes=tuple(classes),
    )

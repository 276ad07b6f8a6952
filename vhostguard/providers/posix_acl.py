"""
Codec de ACL POSIX sobre atributos extendidos.

Linux guarda las ACL en los xattr system.posix_acl_access y
system.posix_acl_default con este formato (little-endian):

    u32 version (2)
    por entrada: u16 tag, u16 perm, u32 id

Aquí solo hay lógica pura sobre listas de entradas; la E/S la hace
providers/posix.py con os.getxattr / os.setxattr.
"""

import stat
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, List, Optional


ACL_EA_ACCESS = "system.posix_acl_access"
ACL_EA_DEFAULT = "system.posix_acl_default"
ACL_EA_VERSION = 2
ACL_UNDEFINED_ID = 0xFFFFFFFF

_HEADER = struct.Struct("<I")
_ENTRY = struct.Struct("<HHI")

PERM_READ = 4
PERM_WRITE = 2
PERM_EXECUTE = 1


class Tag(IntEnum):
    USER_OBJ = 0x01
    USER = 0x02
    GROUP_OBJ = 0x04
    GROUP = 0x08
    MASK = 0x10
    OTHER = 0x20


_NAMED = (Tag.USER, Tag.GROUP)


@dataclass(frozen=True, order=True)
class AclEntry:
    tag: int
    id: int
    perm: int

    @property
    def is_named(self) -> bool:
        return self.tag in _NAMED


def decode(data: bytes) -> List[AclEntry]:
    """Decodifica el valor de un xattr de ACL"""
    if len(data) < _HEADER.size or (len(data) - _HEADER.size) % _ENTRY.size:
        raise ValueError(f"xattr de ACL con tamaño inválido: {len(data)}")
    (version,) = _HEADER.unpack_from(data)
    if version != ACL_EA_VERSION:
        raise ValueError(f"Versión de ACL no soportada: {version}")
    entries = []
    for offset in range(_HEADER.size, len(data), _ENTRY.size):
        tag, perm, ident = _ENTRY.unpack_from(data, offset)
        entries.append(AclEntry(tag, ident, perm & 0o7))
    return sorted(entries)


def encode(entries: Iterable[AclEntry]) -> bytes:
    """Codifica entradas en el orden que exige el kernel (tag, id)"""
    ordered = sorted(entries)
    out = bytearray(_HEADER.pack(ACL_EA_VERSION))
    for entry in ordered:
        ident = entry.id if entry.tag in _NAMED else ACL_UNDEFINED_ID
        out += _ENTRY.pack(entry.tag, entry.perm, ident)
    return bytes(out)


def from_mode(mode: int) -> List[AclEntry]:
    """ACL mínima equivalente a los bits de modo"""
    return [
        AclEntry(Tag.USER_OBJ, ACL_UNDEFINED_ID, (mode >> 6) & 0o7),
        AclEntry(Tag.GROUP_OBJ, ACL_UNDEFINED_ID, (mode >> 3) & 0o7),
        AclEntry(Tag.OTHER, ACL_UNDEFINED_ID, mode & 0o7),
    ]


def parse_perms(text: str, is_dir: bool = False, mode: int = 0) -> int:
    """
    Convierte permisos estilo setfacl (rwX, r-x, rx) a bits.

    X concede ejecución solo a directorios o a archivos que ya son ejecutables
    para alguien.
    """
    perm = 0
    for ch in text:
        if ch == "r":
            perm |= PERM_READ
        elif ch == "w":
            perm |= PERM_WRITE
        elif ch == "x":
            perm |= PERM_EXECUTE
        elif ch == "X":
            if is_dir or stat.S_IMODE(mode) & 0o111:
                perm |= PERM_EXECUTE
        elif ch == "-":
            continue
        else:
            raise ValueError(f"Permiso ACL inválido: {text!r}")
    return perm


def perms_str(perm: int) -> str:
    return "".join((
        "r" if perm & PERM_READ else "-",
        "w" if perm & PERM_WRITE else "-",
        "x" if perm & PERM_EXECUTE else "-",
    ))


def find(entries: Iterable[AclEntry], tag: int, ident: int = ACL_UNDEFINED_ID) -> Optional[AclEntry]:
    for entry in entries:
        if entry.tag == tag and (tag not in _NAMED or entry.id == ident):
            return entry
    return None


def recalc_mask(entries: Iterable[AclEntry]) -> List[AclEntry]:
    """Recalcula MASK como unión de la clase grupo; sin entradas nombradas no hay MASK"""
    base = [e for e in entries if e.tag != Tag.MASK]
    if not any(e.is_named for e in base):
        return sorted(base)
    mask = 0
    for e in base:
        if e.tag in (Tag.USER, Tag.GROUP, Tag.GROUP_OBJ):
            mask |= e.perm
    return sorted(base + [AclEntry(Tag.MASK, ACL_UNDEFINED_ID, mask)])


def with_user(entries: Iterable[AclEntry], uid: int, perm: int) -> List[AclEntry]:
    """Agrega o reemplaza la entrada u:<uid>; el resto de entradas no se toca"""
    kept = [e for e in entries if not (e.tag == Tag.USER and e.id == uid)]
    return recalc_mask(kept + [AclEntry(Tag.USER, uid, perm)])


def without_user(entries: Iterable[AclEntry], uid: int) -> List[AclEntry]:
    kept = [e for e in entries if not (e.tag == Tag.USER and e.id == uid)]
    return recalc_mask(kept)


def has_user(entries: Iterable[AclEntry], uid: int) -> bool:
    return find(entries, Tag.USER, uid) is not None


def default_base(access: Iterable[AclEntry]) -> List[AclEntry]:
    """Base de una ACL por defecto nueva: dueño, grupo y otros copiados de la ACL de acceso"""
    access = list(access)
    return [
        e for e in access if e.tag in (Tag.USER_OBJ, Tag.GROUP_OBJ, Tag.OTHER)
    ]


def group_class_perm(entries: Iterable[AclEntry]) -> int:
    """Bits de grupo que el kernel refleja en st_mode (MASK si existe, si no GROUP_OBJ)"""
    entries = list(entries)
    mask = find(entries, Tag.MASK)
    if mask is not None:
        return mask.perm
    group_obj = find(entries, Tag.GROUP_OBJ)
    return group_obj.perm if group_obj is not None else 0


def effective_perm(entries: Iterable[AclEntry], entry: AclEntry) -> int:
    """Permisos efectivos de una entrada de clase grupo (acotados por MASK)"""
    mask = find(entries, Tag.MASK)
    if mask is None or entry.tag in (Tag.USER_OBJ, Tag.OTHER):
        return entry.perm
    return entry.perm & mask.perm

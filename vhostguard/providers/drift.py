"""
Detección de drift: compara el modelo contra el árbol real.

Solo lectura. La comprobación central es que ninguna ruta de CodeTree fuera
de los subárboles escribibles sea escribible por la identidad de runtime,
ni por bits de modo ni por ACL.
"""

import grp
import os
import stat
from pathlib import Path
from typing import List, Optional

from vhostguard.core.infra.contracts import AclEntryView, FilesystemOps
from vhostguard.core.model import Identity, PathClass, PathClassKind, StateModel
from vhostguard.core.runtime.state import StateDiff
from vhostguard.providers.posix import walk


def _has(perms: str, bit: str) -> bool:
    return bit in perms


def _group_name(gid: int) -> Optional[str]:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return None


def runtime_can_write(
    entries: List[AclEntryView],
    st: os.stat_result,
    runtime: Identity,
    file_group: Optional[str],
) -> bool:
    """
    Evalúa el algoritmo de acceso POSIX para escritura de runtime.

    Las entradas de clase grupo se acotan con la máscara si existe.
    """
    mask = next((p for tag, _, p in entries if tag == "mask"), "rwx")

    if st.st_uid == runtime.uid:
        user_obj = next((p for tag, q, p in entries if tag == "user" and q is None), "---")
        return _has(user_obj, "w")

    for tag, qualifier, perms in entries:
        if tag == "user" and qualifier == runtime.name:
            return _has(perms, "w") and _has(mask, "w")

    group_match = False
    for tag, qualifier, perms in entries:
        if tag != "group":
            continue
        name = file_group if qualifier is None else qualifier
        if name in runtime.groups:
            group_match = True
            if _has(perms, "w") and _has(mask, "w"):
                return True
    if group_match:
        return False

    other = next((p for tag, _, p in entries if tag == "other"), "---")
    return _has(other, "w")


class PosixDriftDetector:
    """Lee dueños, modos y ACL reales y los compara con el modelo"""

    def __init__(self, ops: FilesystemOps):
        self.ops = ops

    def detect_drift(self, model: StateModel) -> List[StateDiff]:
        diffs: List[StateDiff] = []
        owner = self.ops.lookup_identity(model.owner)
        runtime = self.ops.lookup_identity(model.runtime)
        gid = self.ops.lookup_group(model.group)

        if owner is None:
            diffs.append(StateDiff(model.owner, "identity", "exists", "missing", "error"))
        elif owner.home != str(model.shared_home):
            diffs.append(StateDiff(model.owner, "home", str(model.shared_home), owner.home, "error"))

        for pc in model.classes:
            if not os.path.lexists(pc.path):
                severity = "warning" if pc.kind == PathClassKind.DOT_RESOURCE else "error"
                diffs.append(StateDiff(str(pc.path), "exists", True, False, severity))
                continue
            if pc.kind == PathClassKind.SHARED_HOME_ROOT:
                diffs.extend(self._check_grants(pc, severity="error"))
            elif pc.kind == PathClassKind.SCRIPTS_DIR:
                diffs.extend(self._check_meta(pc, owner, gid, recursive=False))
            elif pc.kind == PathClassKind.CODE_TREE:
                diffs.extend(self._check_meta(pc, owner, gid, recursive=True))
                if runtime is not None:
                    diffs.extend(self._check_runtime_write(pc, runtime))
            elif pc.kind == PathClassKind.WRITABLE_DIR:
                diffs.extend(self._check_meta(pc, owner, gid, recursive=True))
                # en NFS la ACL puede faltar: basta 2775 + grupo
                diffs.extend(self._check_grants(pc, severity="info"))
        return diffs

    def _check_meta(self, pc: PathClass, owner: Optional[Identity], gid: Optional[int], recursive: bool) -> List[StateDiff]:
        diffs = []
        for entry, st in walk(pc.path, pc.exclude, recursive=recursive):
            if stat.S_ISLNK(st.st_mode):
                continue
            if owner is not None and st.st_uid != owner.uid:
                diffs.append(StateDiff(entry, "owner", owner.name, st.st_uid))
            if gid is not None and st.st_gid != gid:
                diffs.append(StateDiff(entry, "group", pc.group, st.st_gid))
            wanted = pc.dir_mode if stat.S_ISDIR(st.st_mode) else pc.file_mode
            if wanted is not None and stat.S_IMODE(st.st_mode) != wanted:
                diffs.append(StateDiff(entry, "mode", f"{wanted:04o}", f"{stat.S_IMODE(st.st_mode):04o}"))
        return diffs

    def _check_runtime_write(self, pc: PathClass, runtime: Identity) -> List[StateDiff]:
        diffs = []
        for entry, st in walk(pc.path, pc.exclude):
            if stat.S_ISLNK(st.st_mode):
                continue
            file_group = _group_name(st.st_gid)
            if runtime_can_write(self.ops.get_acl(Path(entry)), st, runtime, file_group):
                diffs.append(StateDiff(entry, "runtime_write", False, True, "error"))
        return diffs

    def _check_grants(self, pc: PathClass, severity: str) -> List[StateDiff]:
        diffs = []
        for grant in pc.acl:
            entries = self.ops.get_acl(pc.path, default=grant.default)
            present = any(tag == "user" and q == grant.user for tag, q, _ in entries)
            if not present:
                field = "default_acl" if grant.default else "acl"
                diffs.append(StateDiff(str(pc.path), field, f"u:{grant.user}:{grant.perms}", None, severity))
        return diffs

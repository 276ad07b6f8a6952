"""
Implementación nativa de FilesystemOps.

Dueño y modo con os.chown / os.chmod, recorridos con os.walk (sin seguir
symlinks), cuentas con pwd/grp y ACL escribiendo directamente los xattr
system.posix_acl_*. Cada operación compara antes de escribir, así que una
segunda corrida no cambia nada.
"""

import errno
import grp
import os
import pwd
import stat
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

from vhostguard.core.errors import GroupMissing, IdentityMissing
from vhostguard.core.infra.contracts import AclEntryView
from vhostguard.core.model import Identity
from vhostguard.providers import identity as accounts
from vhostguard.providers import posix_acl as acl


ACL_UNSUPPORTED_ERRNOS = (errno.ENOTSUP, errno.EOPNOTSUPP)

_TAG_NAMES = {
    acl.Tag.USER_OBJ: "user",
    acl.Tag.USER: "user",
    acl.Tag.GROUP_OBJ: "group",
    acl.Tag.GROUP: "group",
    acl.Tag.MASK: "mask",
    acl.Tag.OTHER: "other",
}


def _norm(path) -> str:
    return os.path.normpath(str(path))


def _under(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def walk(path: Path, exclude: Iterable[Path] = (), recursive: bool = True) -> Iterator[Tuple[str, os.stat_result]]:
    """
    Recorre path y sus descendientes con lstat, podando los excluidos.

    Si path es un symlink a un directorio se recorre el destino (como
    chmod -R o setfacl -R con el argumento de línea de comandos); los symlinks
    de más abajo se devuelven pero nunca se siguen.
    """
    excluded = {_norm(p) for p in exclude}
    root = _norm(path)
    if root in excluded:
        return
    st = os.lstat(root)
    if stat.S_ISLNK(st.st_mode) and os.path.isdir(root):
        real = os.path.realpath(root)
        excluded = {real + e[len(root):] if _under(e, root) else e for e in excluded}
        root, st = real, os.lstat(real)
    yield root, st
    if not recursive or not stat.S_ISDIR(st.st_mode):
        return
    for dirpath, dirnames, filenames in os.walk(root, topdown=True, followlinks=False):
        keep = []
        for name in sorted(dirnames):
            full = os.path.join(dirpath, name)
            if full in excluded:
                continue
            keep.append(name)
            yield full, os.lstat(full)
        dirnames[:] = keep
        for name in sorted(filenames):
            full = os.path.join(dirpath, name)
            if full in excluded:
                continue
            yield full, os.lstat(full)


class PosixFilesystemOps:
    """FilesystemOps sobre el sistema local"""

    name = "posix"

    # -- identidades ---------------------------------------------------------

    def lookup_identity(self, name: str) -> Optional[Identity]:
        return accounts.lookup_identity(name)

    def lookup_group(self, name: str) -> Optional[int]:
        return accounts.lookup_group(name)

    def ensure_identity(self, name: str, home: str, shell: str, group: str, dry_run: bool = False) -> int:
        return accounts.ensure_identity(name, home, shell, group, dry_run=dry_run)

    def _uid(self, name: str, dry_run: bool) -> Optional[int]:
        ident = self.lookup_identity(name)
        if ident is None:
            if dry_run:
                return None
            raise IdentityMissing(name)
        return ident.uid

    def _gid(self, name: str, dry_run: bool) -> Optional[int]:
        gid = self.lookup_group(name)
        if gid is None:
            if dry_run:
                return None
            raise GroupMissing(name)
        return gid

    def _user_name(self, uid: int) -> str:
        try:
            return pwd.getpwuid(uid).pw_name
        except KeyError:
            return str(uid)

    def _group_name(self, gid: int) -> str:
        try:
            return grp.getgrgid(gid).gr_name
        except KeyError:
            return str(gid)

    # -- lectura/escritura de ACL --------------------------------------------

    def _read_acl(self, path: str, st: os.stat_result, default: bool = False) -> Optional[List[acl.AclEntry]]:
        name = acl.ACL_EA_DEFAULT if default else acl.ACL_EA_ACCESS
        try:
            data = os.getxattr(path, name, follow_symlinks=False)
        except OSError as e:
            if e.errno in (errno.ENODATA,) + ACL_UNSUPPORTED_ERRNOS:
                return None if default else acl.from_mode(st.st_mode)
            raise
        return acl.decode(data)

    def _write_acl(self, path: str, entries: List[acl.AclEntry], default: bool = False) -> None:
        name = acl.ACL_EA_DEFAULT if default else acl.ACL_EA_ACCESS
        os.setxattr(path, name, acl.encode(entries), follow_symlinks=False)

    def acl_supported(self, path: Path, dry_run: bool = False) -> bool:
        """
        Sonda de ACL: reescribe la ACL actual de path (set + clear sin efecto).

        En dry-run solo lee.
        """
        target = _norm(path)
        try:
            st = os.lstat(target)
            try:
                data = os.getxattr(target, acl.ACL_EA_ACCESS, follow_symlinks=False)
            except OSError as e:
                if e.errno != errno.ENODATA:
                    raise
                data = acl.encode(acl.from_mode(st.st_mode))
            if not dry_run:
                os.setxattr(target, acl.ACL_EA_ACCESS, data, follow_symlinks=False)
        except OSError as e:
            if e.errno in ACL_UNSUPPORTED_ERRNOS + (errno.EPERM, errno.EACCES):
                return False
            raise
        return True

    def get_acl(self, path: Path, default: bool = False) -> List[AclEntryView]:
        target = _norm(path)
        if os.path.islink(target) and os.path.isdir(target):
            target = os.path.realpath(target)
        entries = self._read_acl(target, os.lstat(target), default=default) or []
        views = []
        for e in entries:
            qualifier = None
            if e.tag == acl.Tag.USER:
                qualifier = self._user_name(e.id)
            elif e.tag == acl.Tag.GROUP:
                qualifier = self._group_name(e.id)
            views.append((_TAG_NAMES[acl.Tag(e.tag)], qualifier, acl.perms_str(e.perm)))
        return views

    # -- creación --------------------------------------------------------------

    def _settle(self, path: str, uid: int, gid: int, mode: int) -> None:
        os.chown(path, uid, gid, follow_symlinks=False)
        os.chmod(path, mode)

    def ensure_directory(self, path: Path, owner: str, group: str, mode: int, dry_run: bool = False) -> int:
        target = _norm(path)
        uid, gid = self._uid(owner, dry_run), self._gid(group, dry_run)
        if not os.path.lexists(target):
            if not dry_run:
                os.mkdir(target, mode)
                self._settle(target, uid, gid, mode)
            return 1
        st = os.lstat(target)
        if not stat.S_ISDIR(st.st_mode):
            raise NotADirectoryError(errno.ENOTDIR, "No es un directorio", target)
        if st.st_uid == uid and st.st_gid == gid and stat.S_IMODE(st.st_mode) == mode:
            return 0
        if not dry_run:
            self._settle(target, uid, gid, mode)
        return 1

    def make_dirs(self, path: Path, owner: str, group: str, mode: int, dry_run: bool = False) -> int:
        target = Path(_norm(path))
        missing = []
        current = target
        while not os.path.lexists(current):
            missing.append(current)
            if current.parent == current:
                break
            current = current.parent
        if not missing:
            if not target.is_dir():
                raise NotADirectoryError(errno.ENOTDIR, "No es un directorio", str(target))
            return 0
        if dry_run:
            return len(missing)
        uid, gid = self._uid(owner, dry_run), self._gid(group, dry_run)
        for directory in reversed(missing):
            os.mkdir(directory, mode)
            self._settle(str(directory), uid, gid, mode)
        return len(missing)

    def create_if_absent(
        self, path: Path, owner: str, group: str, mode: int, directory: bool, dry_run: bool = False
    ) -> int:
        target = _norm(path)
        if os.path.lexists(target):
            return 0
        if dry_run:
            return 1
        uid, gid = self._uid(owner, dry_run), self._gid(group, dry_run)
        if directory:
            os.mkdir(target, mode)
        else:
            with open(target, "x"):
                pass
        self._settle(target, uid, gid, mode)
        return 1

    # -- dueño y modo ----------------------------------------------------------

    def chown_recursive(
        self, path: Path, owner: str, group: str, exclude: Iterable[Path] = (), dry_run: bool = False
    ) -> int:
        if dry_run and not os.path.lexists(_norm(path)):
            return 1
        uid, gid = self._uid(owner, dry_run), self._gid(group, dry_run)
        changed = 0
        for entry, st in walk(path, exclude):
            if st.st_uid == uid and st.st_gid == gid:
                continue
            changed += 1
            if not dry_run:
                os.chown(entry, uid, gid, follow_symlinks=False)
        return changed

    def chmod_recursive(
        self,
        path: Path,
        dir_mode: Optional[int],
        file_mode: Optional[int],
        exclude: Iterable[Path] = (),
        recursive: bool = True,
        dry_run: bool = False,
    ) -> int:
        if dry_run and not os.path.lexists(_norm(path)):
            return 1
        changed = 0
        for entry, st in walk(path, exclude, recursive=recursive):
            if stat.S_ISDIR(st.st_mode):
                wanted = dir_mode
            elif stat.S_ISREG(st.st_mode):
                wanted = file_mode
            else:
                continue
            if wanted is None or stat.S_IMODE(st.st_mode) == wanted:
                continue
            changed += 1
            if not dry_run:
                os.chmod(entry, wanted)
        return changed

    # -- ACL -------------------------------------------------------------------

    def _acl_targets(self, path: Path, exclude: Iterable[Path], recursive: bool, dirs_only: bool = False):
        for entry, st in walk(path, exclude, recursive=recursive):
            if stat.S_ISDIR(st.st_mode) or (not dirs_only and stat.S_ISREG(st.st_mode)):
                yield entry, st

    def set_acl(self, path: Path, user: str, perms: str, recursive: bool = False, dry_run: bool = False) -> int:
        if dry_run and not os.path.lexists(_norm(path)):
            return 1
        uid = self._uid(user, dry_run)
        changed = 0
        for entry, st in self._acl_targets(path, (), recursive):
            current = self._read_acl(entry, st)
            perm = acl.parse_perms(perms, stat.S_ISDIR(st.st_mode), st.st_mode)
            if uid is not None:
                wanted = acl.with_user(current, uid, perm)
                if wanted == sorted(current):
                    continue
            changed += 1
            if not dry_run:
                self._write_acl(entry, wanted)
        return changed

    def set_default_acl(
        self, path: Path, user: str, perms: str, recursive: bool = False, dry_run: bool = False
    ) -> int:
        if dry_run and not os.path.lexists(_norm(path)):
            return 1
        uid = self._uid(user, dry_run)
        changed = 0
        for entry, st in self._acl_targets(path, (), recursive, dirs_only=True):
            current = self._read_acl(entry, st, default=True)
            base = current if current is not None else acl.default_base(self._read_acl(entry, st))
            if uid is not None:
                wanted = acl.with_user(base, uid, acl.parse_perms(perms, is_dir=True))
                if current is not None and wanted == sorted(current):
                    continue
            changed += 1
            if not dry_run:
                self._write_acl(entry, wanted, default=True)
        return changed

    def remove_acl(
        self, path: Path, user: str, exclude: Iterable[Path] = (), recursive: bool = False, dry_run: bool = False
    ) -> int:
        ident = self.lookup_identity(user)
        if ident is None:
            # una cuenta inexistente no puede figurar por nombre en ninguna ACL
            return 0
        if dry_run and not os.path.lexists(_norm(path)):
            return 0
        changed = 0
        for entry, st in self._acl_targets(path, exclude, recursive):
            touched = False
            access = self._read_acl(entry, st)
            if acl.has_user(access, ident.uid):
                touched = True
                if not dry_run:
                    self._write_acl(entry, acl.without_user(access, ident.uid))
            if stat.S_ISDIR(st.st_mode):
                default = self._read_acl(entry, st, default=True)
                if default is not None and acl.has_user(default, ident.uid):
                    touched = True
                    if not dry_run:
                        self._write_acl(entry, acl.without_user(default, ident.uid), default=True)
            changed += int(touched)
        return changed

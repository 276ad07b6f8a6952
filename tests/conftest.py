"""
Fixtures compartidas.

FakeOps reutiliza PosixFilesystemOps sobre un árbol temporal real (chown y
chmod al usuario actual funcionan sin privilegios) y sustituye lo que
necesita root: la base de cuentas y los xattr de ACL, que viven en memoria.
"""

import errno
import os
import stat
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
from rich.console import Console

from vhostguard.core.model import Identity, build_model
from vhostguard.providers import posix_acl as acl
from vhostguard.providers.identity import identity_commands
from vhostguard.providers.posix import PosixFilesystemOps


OWNER = "site_owner"
RUNTIME = "site_runtime"
GROUP = "psacln"
RUNTIME_UID = 424242


class FakeOps(PosixFilesystemOps):
    """PosixFilesystemOps con cuentas y ACL en memoria"""

    name = "fake"

    def __init__(self, shared_home: Path):
        self.identities: Dict[str, Identity] = {
            OWNER: Identity(OWNER, os.getuid(), os.getgid(), str(shared_home), "/bin/bash", (GROUP,)),
            RUNTIME: Identity(RUNTIME, RUNTIME_UID, os.getgid(), str(shared_home), "/bin/false", (GROUP,)),
        }
        self.groups: Dict[str, int] = {GROUP: os.getgid()}
        self.acls: Dict[Tuple[str, bool], List[acl.AclEntry]] = {}
        self.acl_ok = True
        self.fail_acl: Dict[str, int] = {}
        self.identity_calls: List[Tuple[str, str, str, str]] = []

    # -- cuentas ---------------------------------------------------------------

    def lookup_identity(self, name: str) -> Optional[Identity]:
        return self.identities.get(name)

    def lookup_group(self, name: str) -> Optional[int]:
        return self.groups.get(name)

    def ensure_identity(self, name: str, home: str, shell: str, group: str, dry_run: bool = False) -> int:
        commands = identity_commands(self.identities.get(name), name, home, shell, group)
        if commands and not dry_run:
            self.identity_calls.append((name, home, shell, group))
            current = self.identities.get(name)
            groups = tuple(current.groups) if current else ()
            if group not in groups:
                groups += (group,)
            self.identities[name] = Identity(name, os.getuid(), os.getgid(), home, shell, groups)
        return len(commands)

    def _user_name(self, uid: int) -> str:
        for ident in self.identities.values():
            if ident.uid == uid:
                return ident.name
        return str(uid)

    # -- ACL en memoria --------------------------------------------------------

    def acl_supported(self, path: Path, dry_run: bool = False) -> bool:
        return self.acl_ok

    def _read_acl(self, path: str, st: os.stat_result, default: bool = False) -> Optional[List[acl.AclEntry]]:
        stored = self.acls.get((path, default))
        if default:
            return list(stored) if stored is not None else None
        if stored is None:
            return acl.from_mode(st.st_mode)
        # como el kernel: dueño, máscara y otros reflejan st_mode
        mode = stat.S_IMODE(st.st_mode)
        synced = []
        for e in stored:
            if e.tag == acl.Tag.USER_OBJ:
                e = acl.AclEntry(e.tag, e.id, (mode >> 6) & 0o7)
            elif e.tag == acl.Tag.MASK:
                e = acl.AclEntry(e.tag, e.id, (mode >> 3) & 0o7)
            elif e.tag == acl.Tag.OTHER:
                e = acl.AclEntry(e.tag, e.id, mode & 0o7)
            synced.append(e)
        return sorted(synced)

    def _write_acl(self, path: str, entries: List[acl.AclEntry], default: bool = False) -> None:
        for failing, code in self.fail_acl.items():
            if path == failing or path.startswith(failing + os.sep):
                raise OSError(code, os.strerror(code), path)
        if default:
            self.acls[(path, True)] = sorted(entries)
            return
        if any(e.is_named for e in entries):
            self.acls[(path, False)] = sorted(entries)
        else:
            self.acls.pop((path, False), None)
        user_obj = acl.find(entries, acl.Tag.USER_OBJ).perm
        other = acl.find(entries, acl.Tag.OTHER).perm
        special = stat.S_IMODE(os.lstat(path).st_mode) & 0o7000
        os.chmod(path, special | user_obj << 6 | acl.group_class_perm(entries) << 3 | other)

    def user_entries(self, path: Path, default: bool = False) -> Dict[str, str]:
        """u:<nombre> -> permisos de la ACL guardada para path"""
        return {
            q: p for tag, q, p in self.get_acl(path, default=default)
            if tag == "user" and q is not None
        }


def snapshot(root: Path) -> Dict[str, tuple]:
    """Dueño, modo y contenido de cada ruta bajo root"""
    state = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for name in [""] + dirnames + filenames:
            full = os.path.join(dirpath, name) if name else dirpath
            st = os.lstat(full)
            content = None
            if stat.S_ISREG(st.st_mode):
                with open(full, "rb") as f:
                    content = f.read()
            state[full] = (st.st_uid, st.st_gid, st.st_mode, content)
    return state


@pytest.fixture
def quiet_console():
    return Console(quiet=True)


@pytest.fixture
def site(tmp_path):
    """
    Árbol de un vhost típico:

        vhost/                 home compartido (home de runtime)
        vhost/httpdocs/        docroot con código mal permisado
        vhost/.bash_profile    con contenido previo
    """
    home = tmp_path / "vhost"
    home.mkdir(mode=0o755)
    os.chmod(home, 0o755)
    docroot = home / "httpdocs"
    (docroot / "wp-content" / "themes" / "twenty").mkdir(parents=True)
    (docroot / "wp-content" / "uploads" / "2024").mkdir(parents=True)

    (docroot / "index.php").write_text("<?php require 'wp-blog-header.php';\n")
    os.chmod(docroot / "index.php", 0o666)
    (docroot / "wp-content" / "themes" / "twenty" / "style.css").write_text("body {}\n")
    os.chmod(docroot / "wp-content" / "themes" / "twenty", 0o777)
    (docroot / "wp-content" / "uploads" / "2024" / "photo.jpg").write_bytes(b"\xff\xd8\xff")
    os.chmod(docroot / "wp-content" / "uploads" / "2024" / "photo.jpg", 0o600)

    (home / ".bash_profile").write_text("export PATH=$HOME/.local/bin:$PATH\n")
    os.chmod(home / ".bash_profile", 0o600)
    return home


@pytest.fixture
def docroot(site):
    return site / "httpdocs"


@pytest.fixture
def ops(site):
    return FakeOps(site)


@pytest.fixture
def model(site, docroot):
    return build_model(docroot, site, OWNER, RUNTIME)

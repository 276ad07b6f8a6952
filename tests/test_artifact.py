"""
Tests del script de reparación y de la serialización de acciones.
"""

import grp
import os
import pwd
import shutil
import stat
import subprocess
from pathlib import Path

import pytest

from tests.conftest import OWNER, RUNTIME
from vhostguard.core.actions import (
    ChmodRecursive,
    CreateIfAbsent,
    MakeDirs,
    RemoveAcl,
    SetAcl,
    plan_actions,
)
from vhostguard.core.artifact import ArtifactGenerator, ResolvedParams, artifact_path, render_script
from vhostguard.core.model import AclGrant, build_model


DOCROOT = Path("/var/www/vhosts/example.com/httpdocs")
HOME = Path("/var/www/vhosts/example.com")


def _script(**kwargs):
    return render_script(build_model(DOCROOT, HOME, "dev", "rt", **kwargs))


def test_script_is_deterministic():
    assert _script() == _script()


def test_script_header():
    lines = _script().splitlines()
    assert lines[0] == "#!/usr/bin/env bash"
    assert "set -euo pipefail" in lines
    assert "require setfacl" in lines


def test_stages_follow_model_order():
    script = _script()
    order = [
        "echo '>> identity'",
        "echo '>> shared_home_root'",
        "echo '>> scripts_dir'",
        "echo '>> dot_resource'",
        "echo '>> code_tree'",
        "echo '>> writable_dir'",
    ]
    positions = [script.index(marker) for marker in order]
    assert positions == sorted(positions)
    assert script.rstrip().endswith("echo '>> Listo.'")


def test_only_writable_acl_is_tolerated():
    lines = _script().splitlines()
    home = [l for l in lines if l.startswith("setfacl -m u:dev:rx")]
    writable = [l for l in lines if l.startswith("setfacl -R -m u:rt:rwX")]

    assert home and "||" not in home[0]
    assert len(writable) == 2
    assert all("|| echo 'NOTE:" in l for l in writable)


def test_setgid_mode_keeps_five_digits():
    script = _script()
    assert "-exec chmod 02775 '{}' +" in script
    assert "-exec chmod 00755 '{}' +" in script
    assert "-exec chmod 00644 '{}' +" in script


def test_code_tree_prunes_writable_subtrees():
    script = _script(writable=["wp-content/uploads"])
    prune = "find -H /var/www/vhosts/example.com/httpdocs '(' -path /var/www/vhosts/example.com/httpdocs/wp-content/uploads ')' -prune -o"
    assert prune + " -type d -exec chmod 00755 '{}' +" in script
    assert prune + " -exec chown -h dev:psacln '{}' +" in script


def test_runtime_acl_is_revoked_before_chmod():
    lines = _script().splitlines()
    revoke = next(i for i, l in enumerate(lines) if "setfacl -x u:rt -x d:u:rt" in l)
    chmod = next(i for i, l in enumerate(lines) if "chmod 00755" in l)
    assert revoke < chmod


def test_paths_are_quoted_literally():
    odd = Path("/srv/it's a $(site)")
    script = render_script(build_model(odd / "httpdocs", odd, "dev", "rt", writable=["up[1]"]))

    assert "'/srv/it'\"'\"'s a $(site)/httpdocs/up\\[1\\]'" in script


def test_scaffold_lines_never_overwrite():
    lines = _script().splitlines()
    assert "[ -e /var/www/vhosts/example.com/.bash_profile ] || install -m 0644 -o dev -g psacln /dev/null /var/www/vhosts/example.com/.bash_profile" in lines
    assert "[ -e /var/www/vhosts/example.com/.local ] || install -d -m 0700 -o dev -g psacln /var/www/vhosts/example.com/.local" in lines


def test_identity_lines_only_verify():
    script = _script()
    assert "id -u dev >/dev/null 2>&1 || die 'Falta el usuario dev'" in script
    assert "useradd" not in script


def test_make_dirs_lines_for_each_missing_component():
    action = MakeDirs("writable_dir", DOCROOT / "storage" / "app", DOCROOT, "dev", "psacln")
    assert action.shell_lines() == [
        f"[ -d {DOCROOT}/storage ] || install -d -m 0755 -o dev -g psacln {DOCROOT}/storage",
        f"[ -d {DOCROOT}/storage/app ] || install -d -m 0755 -o dev -g psacln {DOCROOT}/storage/app",
    ]


def test_action_descriptions():
    assert SetAcl("s", DOCROOT, (AclGrant("rt", "rwX"), AclGrant("rt", "rwX", default=True)), recursive=True).describe() == \
        "ACL u:rt:rwX d:u:rt:rwX (recursivo)"
    assert ChmodRecursive("s", DOCROOT, 0o2775, None).describe() == "Permisos dirs 2775 (recursivo)"
    assert RemoveAcl("s", DOCROOT, "rt").describe() == "Quitar ACL de rt (acceso y por defecto)"
    assert CreateIfAbsent("s", DOCROOT, "dev", "g", 0o644, False).describe() == "Crear archivo vacío si falta (dev:g 0644)"


def test_plan_starts_with_owner_identity():
    actions = plan_actions(build_model(DOCROOT, HOME, "dev", "rt"))
    assert actions[0].stage == "identity"
    assert actions[0].name == "dev"
    assert actions[0].path == HOME


class TestGenerator:

    def test_writes_script_with_restricted_mode(self, ops, model, quiet_console):
        params = ResolvedParams(label="example.com")
        path = ArtifactGenerator(ops, quiet_console).generate(model, params)

        assert path == model.shared_home / "scripts" / "wp_two_user_repair_example.com.sh"
        assert path.read_text() == render_script(model)
        st = os.lstat(path)
        assert stat.S_IMODE(st.st_mode) == 0o750
        assert st.st_uid == ops.identities[OWNER].uid

    def test_regeneration_is_identical(self, ops, model, quiet_console):
        generator = ArtifactGenerator(ops, quiet_console)
        params = ResolvedParams(label="example.com")
        first = generator.generate(model, params).read_text()
        second = generator.generate(model, params).read_text()
        assert first == second
        assert [p.name for p in model.scripts_dir.iterdir()] == ["wp_two_user_repair_example.com.sh"]

    def test_dry_run_writes_nothing(self, ops, model, quiet_console):
        params = ResolvedParams(label="example.com")
        path = ArtifactGenerator(ops, quiet_console).generate(model, params, dry_run=True)

        assert path == artifact_path(model, params)
        assert not model.scripts_dir.exists()

    def test_script_reflects_runtime_grants(self, model):
        assert f"setfacl -R -m u:{RUNTIME}:rwX" in render_script(model)


def test_symlinked_roots_are_followed_by_script():
    lines = _script().splitlines()
    uploads = f"{DOCROOT}/wp-content/uploads"

    assert f"chown -R -H dev:psacln {uploads}" in lines
    assert f"find -H {uploads} -type d -exec chmod 02775 '{{}}' +" in lines


def _stub(bindir: Path, name: str, body: str) -> None:
    path = bindir / name
    path.write_text(f"#!/bin/sh\n{body}\n")
    os.chmod(path, 0o755)


def test_script_restores_tree_when_run(tmp_path, site, docroot):
    if shutil.which("bash") is None:
        pytest.skip("bash no disponible")
    try:
        owner = pwd.getpwuid(os.getuid()).pw_name
        group = grp.getgrgid(os.getgid()).gr_name
    except KeyError:
        pytest.skip("el usuario actual no tiene nombre")

    # setfacl/getfacl e identidades se sustituyen; chown/chmod/find son reales
    bindir = tmp_path / "bin"
    bindir.mkdir()
    _stub(bindir, "setfacl", "exit 0")
    _stub(bindir, "getfacl", "exit 0")
    _stub(bindir, "getent", "exit 0")
    _stub(bindir, "id", "echo 0")

    model = build_model(docroot, site, owner, "site_runtime", group=group)
    script = tmp_path / "repair.sh"
    script.write_text(render_script(model))

    uploads = docroot / "wp-content" / "uploads"
    os.chmod(uploads, 0o700)
    os.chmod(docroot / "wp-content", 0o777)
    if os.getuid() == 0:
        for dirpath, dirnames, filenames in os.walk(docroot):
            for name in [dirpath] + [os.path.join(dirpath, n) for n in dirnames + filenames]:
                os.chown(name, 54321, 54321)

    env = dict(os.environ, PATH=f"{bindir}{os.pathsep}{os.environ.get('PATH', '')}")
    result = subprocess.run(["bash", str(script)], env=env, capture_output=True, text=True)

    assert result.returncode == 0, result.stderr
    assert stat.S_IMODE(os.lstat(docroot / "index.php").st_mode) == 0o644
    assert stat.S_IMODE(os.lstat(docroot / "wp-content").st_mode) == 0o755
    assert stat.S_IMODE(os.lstat(docroot / "wp-content" / "themes" / "twenty").st_mode) == 0o755
    assert stat.S_IMODE(os.lstat(docroot / "wp-content" / "themes" / "twenty" / "style.css").st_mode) == 0o644
    for path in (uploads, uploads / "2024", uploads / "2024" / "photo.jpg", docroot / "wp-content" / "cache"):
        assert stat.S_IMODE(os.lstat(path).st_mode) == 0o2775, path
    for path in (docroot / "index.php", uploads / "2024" / "photo.jpg"):
        st = os.lstat(path)
        assert (st.st_uid, st.st_gid) == (os.getuid(), os.getgid())

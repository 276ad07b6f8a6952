import errno
import os

from tests.conftest import RUNTIME, RUNTIME_UID
from vhostguard.core.model import Identity
from vhostguard.core.reconciler import Reconciler
from vhostguard.providers.drift import PosixDriftDetector, runtime_can_write


RT = Identity(RUNTIME, RUNTIME_UID, 1000, groups=("psacln",))


def _st(mode, uid=0, gid=0):
    return os.stat_result((mode, 0, 0, 1, uid, gid, 0, 0, 0, 0))


def _minimal(user, group, other):
    return [("user", None, user), ("group", None, group), ("other", None, other)]


class TestRuntimeCanWrite:

    def test_other_bits(self):
        assert runtime_can_write(_minimal("rw-", "r--", "rw-"), _st(0o100666), RT, "www")
        assert not runtime_can_write(_minimal("rw-", "r--", "r--"), _st(0o100644), RT, "www")

    def test_owning_group(self):
        entries = _minimal("rwx", "rwx", "r-x")
        assert runtime_can_write(entries, _st(0o40775), RT, "psacln")
        # el grupo coincide y no permite escribir: no se consulta "other"
        assert not runtime_can_write(_minimal("rwx", "r-x", "rwx"), _st(0o40757), RT, "psacln")

    def test_named_user_is_masked(self):
        entries = _minimal("rw-", "r--", "r--") + [("user", RUNTIME, "rw-"), ("mask", None, "r--")]
        assert not runtime_can_write(entries, _st(0o100644), RT, "www")
        entries[-1] = ("mask", None, "rw-")
        assert runtime_can_write(entries, _st(0o100664), RT, "www")

    def test_file_owned_by_runtime(self):
        assert runtime_can_write(_minimal("rw-", "r--", "r--"), _st(0o100644, uid=RUNTIME_UID), RT, "www")


class TestDetector:

    def _fields(self, diffs, path):
        return {d.field for d in diffs if d.resource_id == str(path)}

    def test_reports_drift_before_apply(self, ops, model, docroot):
        diffs = PosixDriftDetector(ops).detect_drift(model)

        index = docroot / "index.php"
        assert {"mode", "runtime_write"} <= self._fields(diffs, index)
        assert "exists" in self._fields(diffs, model.scripts_dir)
        assert any(d.field == "acl" and d.severity == "error" for d in diffs)

    def test_clean_after_apply(self, ops, model, quiet_console):
        Reconciler(ops, quiet_console).reconcile(model)

        diffs = PosixDriftDetector(ops).detect_drift(model)

        assert [d for d in diffs if d.severity in ("error", "warning")] == []

    def test_runtime_acl_in_code_tree_is_reported(self, ops, model, docroot, quiet_console):
        Reconciler(ops, quiet_console).reconcile(model)
        style = docroot / "wp-content" / "themes" / "twenty" / "style.css"
        ops.set_acl(style, RUNTIME, "rw")

        diffs = PosixDriftDetector(ops).detect_drift(model)

        assert "runtime_write" in self._fields(diffs, style)

    def test_missing_writable_acl_is_informational(self, ops, model, docroot, quiet_console):
        uploads = docroot / "wp-content" / "uploads"
        ops.fail_acl[str(uploads)] = errno.EOPNOTSUPP
        Reconciler(ops, quiet_console).reconcile(model)

        diffs = [d for d in PosixDriftDetector(ops).detect_drift(model) if d.resource_id == str(uploads)]

        assert diffs
        assert all(d.severity == "info" for d in diffs)

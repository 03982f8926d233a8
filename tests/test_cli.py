"""Tests for the shadow-mirror CLI."""

from unittest.mock import AsyncMock, patch

import pytest

from conftest import FOREIGN_KEYS, FakeRemoteStore, make_tasks, sample_tables

from shadow_mirror.cli import build_parser, main
from shadow_mirror.config.loader import load_config
from shadow_mirror.errors import PersistenceError
from shadow_mirror.store.snapshot_store import SnapshotStore

CONFIG_TOML = """
default_profile = "local"

[profiles.local]
provider = "postgres"
url = "postgresql://postgres:pw@127.0.0.1:54322/postgres"

[mirror]
store_path = "backups/shadow.db"
export_path = "public/shadow-latest.json"
store_backup_every = 0
"""


@pytest.fixture(autouse=True)
def _no_logging_setup():
    with patch("shadow_mirror.cli.setup_logging"):
        yield


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "shadow-mirror.toml"
    path.write_text(CONFIG_TOML)
    return path


def _run(config_path, *args, remote=None) -> int:
    argv = ["--config", str(config_path), *args]
    if remote is None:
        return main(argv)
    with patch("shadow_mirror.cli.get_adapter", new=AsyncMock(return_value=remote)):
        return main(argv)


def _store(config_path) -> SnapshotStore:
    return SnapshotStore(load_config(config_path).mirror.store_path)


class TestParser:
    """Verify argument parsing."""

    def test_global_options(self):
        args = build_parser().parse_args(
            ["--config", "x.toml", "--profile", "cloud", "--env-prefix", "APP_", "-v", "capture"]
        )

        assert args.config == "x.toml"
        assert args.profile == "cloud"
        assert args.env_prefix == "APP_"
        assert args.verbose
        assert not args.override_guard

    def test_restore_options(self):
        args = build_parser().parse_args(
            ["restore", "--snapshot", "7", "--user-id", "u1", "--dry-run", "--skip-filter", "--yes"]
        )

        assert args.snapshot == 7
        assert args.user_id == "u1"
        assert args.dry_run and args.skip_filter and args.yes

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestCapture:
    """Test the capture command exit codes and output."""

    def test_success(self, config_path, capsys):
        remote = FakeRemoteStore(sample_tables())

        assert _run(config_path, "capture", remote=remote) == 0

        assert "saved" in capsys.readouterr().out
        assert remote.closed
        store = _store(config_path)
        try:
            assert store.count_all() == 1
        finally:
            store.close()

    def test_guard_block_exits_1(self, config_path, capsys):
        tables = sample_tables()
        tables["tasks"] = make_tasks(120)
        remote = FakeRemoteStore(tables)
        assert _run(config_path, "capture", remote=remote) == 0

        remote.tables["tasks"] = {t["id"]: t for t in make_tasks(3)}
        code = _run(config_path, "capture", remote=remote)

        out = capsys.readouterr().out
        assert code == 1
        assert "BLOCKED by anomaly guard" in out
        assert "120" in out

    def test_override_guard(self, config_path):
        tables = sample_tables()
        tables["tasks"] = make_tasks(120)
        remote = FakeRemoteStore(tables)
        _run(config_path, "capture", remote=remote)

        remote.tables["tasks"] = {}

        assert _run(config_path, "capture", "--override-guard", remote=remote) == 0

    def test_unhealthy_exits_1(self, config_path):
        remote = FakeRemoteStore(sample_tables())
        remote.fail_count = True

        assert _run(config_path, "capture", remote=remote) == 1

    def test_locked_exits_1(self, config_path, capsys):
        lock = config_path.parent / "backups" / "shadow.db.lock"
        lock.parent.mkdir(parents=True)
        lock.write_text("99999")

        assert _run(config_path, "capture", remote=FakeRemoteStore(sample_tables())) == 1
        assert "Another capture cycle" in capsys.readouterr().out
        assert lock.exists()

    def test_lock_released_after_run(self, config_path):
        _run(config_path, "capture", remote=FakeRemoteStore(sample_tables()))

        assert not (config_path.parent / "backups" / "shadow.db.lock").exists()

    def test_store_open_failure_closes_adapter(self, config_path, capsys):
        remote = FakeRemoteStore(sample_tables())
        broken = PersistenceError("Cannot open snapshot store: disk I/O error")

        with patch("shadow_mirror.cli.SnapshotStore", side_effect=broken):
            code = _run(config_path, "capture", remote=remote)

        assert code == 1
        assert remote.closed
        assert "disk I/O error" in capsys.readouterr().out
        assert not (config_path.parent / "backups" / "shadow.db.lock").exists()

    def test_missing_config_exits_1(self, tmp_path, capsys):
        assert main(["--config", str(tmp_path / "none.toml"), "capture"]) == 1
        assert "Mirror config not found" in capsys.readouterr().out


class TestRestore:
    """Test the restore command."""

    @pytest.fixture
    def captured(self, config_path):
        _run(config_path, "capture", remote=FakeRemoteStore(sample_tables()))
        return config_path

    def test_dry_run_prints_tally(self, captured, capsys):
        remote = FakeRemoteStore({"tombstones": []}, FOREIGN_KEYS)

        code = _run(captured, "restore", "--dry-run", "--user-id", "u9", remote=remote)

        out = capsys.readouterr().out
        assert code == 0
        assert "Restore Summary" in out
        assert "DRY RUN" in out
        assert remote.upserts == []

    def test_restore_with_yes(self, captured):
        remote = FakeRemoteStore({"tombstones": []}, FOREIGN_KEYS)

        assert _run(captured, "restore", "--yes", "--user-id", "u9", remote=remote) == 0
        assert set(remote.tables["tasks"]) == {"t0", "t1", "t2"}

    def test_prompt_declined(self, captured, capsys):
        remote = FakeRemoteStore({"tombstones": []}, FOREIGN_KEYS)

        with patch("shadow_mirror.cli.console.input", return_value="n"):
            code = _run(captured, "restore", "--user-id", "u9", remote=remote)

        assert code == 0
        assert "Cancelled" in capsys.readouterr().out
        assert remote.upserts == []

    def test_failures_exit_1(self, captured):
        remote = FakeRemoteStore({"tombstones": []}, FOREIGN_KEYS)
        remote.fail_upsert.add("tasks")

        assert _run(captured, "restore", "--yes", "--user-id", "u9", remote=remote) == 1

    def test_no_snapshot_exits_1(self, config_path, capsys):
        code = _run(config_path, "restore", "--yes", remote=FakeRemoteStore())

        assert code == 1
        assert "No known-good snapshots" in capsys.readouterr().out


class TestLocalCommands:
    """Test snapshots, verify and prune."""

    def test_snapshots_empty(self, config_path, capsys):
        assert _run(config_path, "snapshots") == 0
        assert "No snapshots yet" in capsys.readouterr().out

    def test_snapshots_unreadable_store_exits_1(self, config_path, capsys):
        broken = PersistenceError("Cannot open snapshot store: not a database")

        with patch("shadow_mirror.cli.SnapshotStore", side_effect=broken):
            assert _run(config_path, "snapshots") == 1

        assert "not a database" in capsys.readouterr().out

    def test_snapshots_lists_rows(self, config_path, capsys):
        _run(config_path, "capture", remote=FakeRemoteStore(sample_tables()))
        capsys.readouterr()

        assert _run(config_path, "snapshots", "--limit", "5") == 0
        out = capsys.readouterr().out
        assert "Snapshots" in out
        assert "latest known-good" in out

    def test_verify_after_capture(self, config_path, capsys):
        _run(config_path, "capture", remote=FakeRemoteStore(sample_tables()))
        capsys.readouterr()

        assert _run(config_path, "verify") == 0
        assert "checksum matches" in capsys.readouterr().out

    def test_verify_without_export_fails(self, config_path):
        assert _run(config_path, "verify") == 1

    def test_prune_below_mark(self, config_path, capsys):
        assert _run(config_path, "prune") == 0
        assert "Nothing to prune" in capsys.readouterr().out

    def test_prune_force(self, config_path, capsys):
        _run(config_path, "capture", remote=FakeRemoteStore(sample_tables()))
        capsys.readouterr()

        assert _run(config_path, "prune", "--force", "--keep", "1") == 0
        assert "Pruned 0 of 1" in capsys.readouterr().out

"""Tests for the command-line interface."""

from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from rolesync.cli import cli
from rolesync.differ import TagDiff
from rolesync.linker import SweepResult
from tests.fixtures.fakes import FakeStore, record

ENV = {"DISCORD_TOKEN": "token", "GUILD_ID": "123", "TABLE_NAME": "players"}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        *ENV,
        "STREAM_ARN",
        "CATALOG_PATH",
        "AUDIT_TOPIC_ARN",
        "AUDIT_SAMPLE_SIZE",
        "DEBOUNCE_MS",
        "AWS_REGION",
        "AWS_DEFAULT_REGION",
    ):
        monkeypatch.delenv(name, raising=False)


class FakeRecordStore(FakeStore):
    """FakeStore usable where the CLI builds a RecordStore."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        pass


class TestCli:
    """Tests for the CLI group."""

    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "sweep", "link", "audit", "plan", "catalog"):
            assert command in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestMissingConfig:
    """Tests for configuration errors."""

    @pytest.mark.parametrize("command", ["run", "sweep", "link", "audit"])
    def test_missing_env_exits_1(self, runner, command):
        result = runner.invoke(cli, [command])
        assert result.exit_code == 1
        assert "Missing env vars: DISCORD_TOKEN, GUILD_ID, TABLE_NAME" in result.output

    def test_bad_catalog_exits_1(self, runner, tmp_path):
        path = tmp_path / "catalog.yaml"
        path.write_text("{}")
        with patch("rolesync.cli.RecordStore", return_value=FakeRecordStore()):
            result = runner.invoke(cli, ["sweep", "--catalog", str(path)], env=ENV)
        assert result.exit_code == 1
        assert "Invalid catalog" in result.output


class TestCommands:
    """Tests for individual commands with collaborators patched."""

    def test_sweep(self, runner):
        store = FakeRecordStore([record("p1", "42", tier="1")])
        with (
            patch("rolesync.cli.RecordStore", return_value=store),
            patch("rolesync.cli.SyncService.startup_sweep", AsyncMock(return_value=1)),
        ):
            result = runner.invoke(cli, ["sweep"], env=ENV)
        assert result.exit_code == 0, result.output
        assert "Reconciled 1 linked record(s)" in result.output

    def test_link(self, runner):
        sweep = SweepResult(linked=["p2"], ambiguous=["p3"], unmatched=4)
        with (
            patch("rolesync.cli.RecordStore", return_value=FakeRecordStore()),
            patch("rolesync.cli.SyncService.link_sweep", AsyncMock(return_value=sweep)),
        ):
            result = runner.invoke(cli, ["link"], env=ENV)
        assert result.exit_code == 0, result.output
        assert "Linked: 1" in result.output
        assert "Ambiguous: 1" in result.output
        assert "Unmatched: 4" in result.output

    def test_audit(self, runner):
        store = FakeRecordStore([record("p1", label="alice")])
        with patch("rolesync.cli.RecordStore", return_value=store):
            result = runner.invoke(cli, ["audit"], env=ENV)
        assert result.exit_code == 0, result.output
        assert "alice (p1)" in result.output

    def test_audit_nothing_unlinked(self, runner):
        store = FakeRecordStore([record("p1", "42", label="alice")])
        with patch("rolesync.cli.RecordStore", return_value=store):
            result = runner.invoke(cli, ["audit"], env=ENV)
        assert result.exit_code == 0, result.output
        assert "No unlinked records" in result.output

    def test_audit_store_down_exits_1(self, runner):
        store = FakeRecordStore([record("p1", label="alice")])
        store.unavailable = True
        with patch("rolesync.cli.RecordStore", return_value=store):
            result = runner.invoke(cli, ["audit"], env=ENV)
        assert result.exit_code == 1
        assert "store down" in result.output
        assert "No unlinked records" not in result.output

    def test_audit_sample_size_from_env(self, runner):
        store = FakeRecordStore([record(f"p{i}", label=f"user{i}") for i in range(3)])
        with patch("rolesync.cli.RecordStore", return_value=store):
            result = runner.invoke(cli, ["audit"], env={**ENV, "AUDIT_SAMPLE_SIZE": "1"})
        assert result.exit_code == 0, result.output
        assert "user0 (p0)" in result.output
        assert "user1 (p1)" not in result.output
        assert "... and 2 more" in result.output

    def test_region_falls_back_to_default_region(self, runner):
        with patch("rolesync.cli.RecordStore", return_value=FakeRecordStore()) as factory:
            runner.invoke(cli, ["audit"], env={**ENV, "AWS_DEFAULT_REGION": "eu-west-1"})
        assert factory.call_args.args[1] == "eu-west-1"

    def test_plan(self, runner):
        store = FakeRecordStore([record("p1", "42", tier="2")])
        diff = TagDiff(to_add=frozenset({"b"}), to_remove=frozenset({"a"}))
        with (
            patch("rolesync.cli.RecordStore", return_value=store),
            patch("rolesync.cli.Reconciler.plan", AsyncMock(return_value=diff)),
        ):
            result = runner.invoke(cli, ["plan", "p1"], env=ENV)
        assert result.exit_code == 0, result.output
        assert "  - a" in result.output
        assert "  + b" in result.output

    def test_plan_missing_record(self, runner):
        with patch("rolesync.cli.RecordStore", return_value=FakeRecordStore()):
            result = runner.invoke(cli, ["plan", "ghost"], env=ENV)
        assert result.exit_code == 1
        assert "Record not found: ghost" in result.output

    def test_run_without_stream(self, runner):
        store = FakeRecordStore()
        store.get_stream_arn = AsyncMock(return_value=None)
        with patch("rolesync.cli.RecordStore", return_value=store):
            result = runner.invoke(cli, ["run"], env=ENV)
        assert result.exit_code == 1
        assert "has no stream" in result.output


class TestCatalogValidate:
    """Tests for catalog validate."""

    def test_valid(self, runner, tmp_path):
        path = tmp_path / "catalog.yaml"
        path.write_text(
            "categories:\n  tier:\n    fields: [tier_override, tier]\n"
            "    values: {1: '111', 2: '222'}\nbaseline: ['333']\n"
        )
        result = runner.invoke(cli, ["catalog", "validate", str(path)])
        assert result.exit_code == 0, result.output
        assert "3 managed role(s)" in result.output
        assert "tier (tier_override > tier): 2" in result.output

    def test_invalid(self, runner, tmp_path):
        path = tmp_path / "catalog.yaml"
        path.write_text("flags: [oops")
        result = runner.invoke(cli, ["catalog", "validate", str(path)])
        assert result.exit_code == 1

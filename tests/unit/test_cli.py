"""Tests for the CLI commands."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from limiter_registry.cli import cli
from limiter_registry.exceptions import ConcurrentModificationError, ValidationError
from limiter_registry.models import LimiterView, RateLimiterDefinition
from limiter_registry.reconciler import ReconcileResult


@pytest.fixture(autouse=True)
def no_logging_setup():
    """Keep CLI invocations from reconfiguring the test process's root logger."""
    with patch("limiter_registry.cli.configure_logging") as mock_configure:
        yield mock_configure


@pytest.fixture
def mock_registry():
    """Registry double returned by the CLI's registry factory."""
    registry = MagicMock()
    registry.close = AsyncMock()
    registry.list_for_context = AsyncMock(return_value=[])
    registry.find_by_name = AsyncMock(return_value=None)
    registry.read_views = AsyncMock(return_value=[])
    registry.save_or_update = AsyncMock()
    registry.delete = AsyncMock(return_value=None)
    registry.purge_mirror = AsyncMock(return_value=True)
    with patch("limiter_registry.cli._build_registry", return_value=registry):
        yield registry


def _view(name: str = "login", curr_permits: int = 3) -> LimiterView:
    return LimiterView(
        name=name,
        apps=frozenset({"app1", "app2"}),
        max_permits=100,
        curr_permits=curr_permits,
        rate=10,
        last_permit_timestamp="1700000000000",
    )


class TestGroupOptions:
    """Shared options of the cli group."""

    def test_options_reach_settings(self, mock_registry) -> None:
        """Group options override environment settings."""
        runner = CliRunner()
        with patch("limiter_registry.cli._build_registry", return_value=mock_registry) as build:
            result = runner.invoke(
                cli,
                [
                    "--table",
                    "limits-prod",
                    "--redis-url",
                    "redis://cache:6379/3",
                    "--key-prefix",
                    "rl:",
                    "list",
                    "--app",
                    "app1",
                ],
            )
        assert result.exit_code == 0, result.output
        settings = build.call_args.args[0]
        assert settings.table_name == "limits-prod"
        assert settings.redis_url == "redis://cache:6379/3"
        assert settings.key_prefix == "rl:"

    def test_table_option_beats_invalid_env(self, mock_registry, monkeypatch) -> None:
        """--table works even when the environment holds an invalid table."""
        monkeypatch.setenv("LIMITER_REGISTRY_TABLE", "x")
        runner = CliRunner()
        with patch("limiter_registry.cli._build_registry", return_value=mock_registry) as build:
            result = runner.invoke(cli, ["--table", "good-table", "list", "--app", "app1"])
        assert result.exit_code == 0, result.output
        assert build.call_args.args[0].table_name == "good-table"

    def test_log_options(self, mock_registry, no_logging_setup) -> None:
        """Log level and format are passed to logging setup."""
        runner = CliRunner()
        result = runner.invoke(cli, ["--log-level", "debug", "--log-json", "list", "-a", "app1"])
        assert result.exit_code == 0, result.output
        no_logging_setup.assert_called_once_with("DEBUG", json_format=True)

    def test_invalid_setting_exits_1(self) -> None:
        """Invalid settings are reported without a traceback."""
        runner = CliRunner()
        result = runner.invoke(cli, ["--table", "x", "list", "--app", "app1"])
        assert result.exit_code == 1
        assert "Invalid table_name" in result.output

    def test_help_lists_commands(self) -> None:
        """The group help shows every command."""
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ["create-table", "list", "show", "set", "delete", "purge-mirror"]:
            assert command in result.output
        assert "reconcile" in result.output


class TestList:
    """Tests for `limiter-registry list`."""

    def test_list_table(self, mock_registry) -> None:
        """Views render as a table."""
        mock_registry.list_for_context.return_value = [_view()]
        result = CliRunner().invoke(cli, ["list", "--app", "app1"])

        assert result.exit_code == 0, result.output
        mock_registry.list_for_context.assert_awaited_once_with("app1")
        mock_registry.close.assert_awaited_once()
        assert "login" in result.output
        assert "app1,app2" in result.output
        assert "Curr Permits" in result.output

    def test_list_json(self, mock_registry) -> None:
        """Views render as a JSON array."""
        mock_registry.list_for_context.return_value = [_view(curr_permits=7)]
        result = CliRunner().invoke(cli, ["list", "--app", "app1", "--format", "json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data[0]["name"] == "login"
        assert data[0]["curr_permits"] == 7
        assert data[0]["apps"] == ["app1", "app2"]

    def test_list_empty(self, mock_registry) -> None:
        """No limiters prints a notice."""
        result = CliRunner().invoke(cli, ["list", "--app", "nobody"])
        assert result.exit_code == 0
        assert "No limiters found" in result.output

    def test_list_requires_app(self, mock_registry) -> None:
        """--app is required."""
        result = CliRunner().invoke(cli, ["list"])
        assert result.exit_code == 2


class TestShow:
    """Tests for `limiter-registry show`."""

    def test_show(self, mock_registry) -> None:
        """Definition and mirror are printed together."""
        mock_registry.find_by_name.return_value = RateLimiterDefinition(
            "login", {"app1", "app2"}, 100, 10, version=4
        )
        mock_registry.read_views.return_value = [_view()]

        result = CliRunner().invoke(cli, ["show", "login"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["definition"]["version"] == 4
        assert data["mirror"]["curr_permits"] == 3

    def test_show_orphaned_mirror(self, mock_registry) -> None:
        """A mirror without a definition is still shown."""
        mock_registry.read_views.return_value = [_view()]
        result = CliRunner().invoke(cli, ["show", "login"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["definition"] is None

    def test_show_missing(self, mock_registry) -> None:
        """Unknown limiters exit with 1."""
        result = CliRunner().invoke(cli, ["show", "ghost"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestSet:
    """Tests for `limiter-registry set`."""

    def test_set(self, mock_registry) -> None:
        """set calls save_or_update and reports the stored definition."""
        mock_registry.save_or_update.return_value = RateLimiterDefinition(
            "login", {"app1", "app2"}, 200, 20, version=2
        )

        result = CliRunner().invoke(
            cli, ["set", "login", "--app", "app2", "--max-permits", "200", "--rate", "20"]
        )

        assert result.exit_code == 0, result.output
        mock_registry.save_or_update.assert_awaited_once_with("login", "app2", 200, 20)
        assert "apps=app1,app2" in result.output

    def test_set_validation_error(self, mock_registry) -> None:
        """Library errors exit with 1 and a message."""
        mock_registry.save_or_update.side_effect = ValidationError("rate", 0, "Must be positive")

        result = CliRunner().invoke(cli, ["set", "login", "-a", "app1", "-m", "10", "-r", "0"])

        assert result.exit_code == 1
        assert "Invalid rate 0: Must be positive" in result.output
        mock_registry.close.assert_awaited_once()

    def test_set_conflict(self, mock_registry) -> None:
        """Exhausted retries are reported."""
        mock_registry.save_or_update.side_effect = ConcurrentModificationError("login", 5)

        result = CliRunner().invoke(cli, ["set", "login", "-a", "app1", "-m", "10", "-r", "1"])

        assert result.exit_code == 1
        assert "modified concurrently" in result.output

    def test_set_non_integer(self, mock_registry) -> None:
        """click rejects non-integer counts."""
        result = CliRunner().invoke(cli, ["set", "login", "-a", "app1", "-m", "ten", "-r", "1"])
        assert result.exit_code == 2
        mock_registry.save_or_update.assert_not_awaited()


class TestDelete:
    """Tests for `limiter-registry delete`."""

    def test_delete_last_app(self, mock_registry) -> None:
        """Removing the last app reports the deletion."""
        mock_registry.find_by_name.return_value = RateLimiterDefinition("login", {"app1"}, 1, 1)

        result = CliRunner().invoke(cli, ["delete", "login", "--app", "app1"])

        assert result.exit_code == 0, result.output
        mock_registry.delete.assert_awaited_once_with("app1", "login")
        assert "Deleted login" in result.output

    def test_delete_one_of_many(self, mock_registry) -> None:
        """Removing one of several apps reports the remaining apps."""
        mock_registry.find_by_name.return_value = RateLimiterDefinition(
            "login", {"app1", "app2"}, 1, 1
        )
        mock_registry.delete.return_value = RateLimiterDefinition("login", {"app2"}, 1, 1)

        result = CliRunner().invoke(cli, ["delete", "login", "-a", "app1"])

        assert result.exit_code == 0, result.output
        assert "apps=app2" in result.output

    def test_delete_unknown(self, mock_registry) -> None:
        """Unknown limiters are a no-op."""
        result = CliRunner().invoke(cli, ["delete", "ghost", "-a", "app1"])
        assert result.exit_code == 0
        assert "nothing to do" in result.output


class TestPurgeMirror:
    """Tests for `limiter-registry purge-mirror`."""

    def test_purge(self, mock_registry) -> None:
        """A removed mirror is reported."""
        result = CliRunner().invoke(cli, ["purge-mirror", "login"])
        assert result.exit_code == 0
        mock_registry.purge_mirror.assert_awaited_once_with("login")
        assert "removed" in result.output

    def test_purge_missing(self, mock_registry) -> None:
        """A missing mirror is reported."""
        mock_registry.purge_mirror.return_value = False
        result = CliRunner().invoke(cli, ["purge-mirror", "login"])
        assert result.exit_code == 0
        assert "No mirror found" in result.output

    def test_purge_live_limiter(self, mock_registry) -> None:
        """Refusing to purge a live limiter exits with 1."""
        mock_registry.purge_mirror.side_effect = ValidationError("name", "login", "still exists")
        result = CliRunner().invoke(cli, ["purge-mirror", "login"])
        assert result.exit_code == 1


class TestReconcile:
    """Tests for `limiter-registry reconcile`."""

    def test_once(self, mock_registry) -> None:
        """--once runs a single tick and prints its summary."""
        with patch("limiter_registry.cli.Reconciler") as reconciler_cls:
            reconciler_cls.return_value.run_once = AsyncMock(
                return_value=ReconcileResult(processed_count=2, synced_count=2)
            )
            result = CliRunner().invoke(cli, ["reconcile", "--once", "--interval", "5"])

        assert result.exit_code == 0, result.output
        reconciler_cls.assert_called_once_with(mock_registry, 5.0)
        assert json.loads(result.output)["synced"] == 2

    def test_once_with_errors_exits_1(self, mock_registry) -> None:
        """A tick with failures exits with 1."""
        with patch("limiter_registry.cli.Reconciler") as reconciler_cls:
            reconciler_cls.return_value.run_once = AsyncMock(
                return_value=ReconcileResult(processed_count=1, errors=["boom"])
            )
            result = CliRunner().invoke(cli, ["reconcile", "--once"])

        assert result.exit_code == 1

    def test_invalid_interval(self, mock_registry) -> None:
        """Non-positive intervals are rejected."""
        result = CliRunner().invoke(cli, ["reconcile", "--interval", "0"])
        assert result.exit_code == 1
        assert "must be positive" in result.output

    def test_serve_until_stopped(self, mock_registry) -> None:
        """Without --once the reconciler runs until its task ends."""
        with patch("limiter_registry.cli.Reconciler") as reconciler_cls:
            reconciler = reconciler_cls.return_value
            reconciler.wait = AsyncMock()
            reconciler.stop = AsyncMock()
            result = CliRunner().invoke(cli, ["reconcile"])

        assert result.exit_code == 0, result.output
        reconciler_cls.assert_called_once_with(mock_registry, 60.0)
        reconciler.start.assert_called_once()
        reconciler.wait.assert_awaited_once()
        reconciler.stop.assert_awaited_once()
        assert "Reconciler stopped" in result.output

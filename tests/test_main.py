"""Tests for the CLI wiring and logging setup."""

from __future__ import annotations

import errno
import io
import logging
from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from icmplib.exceptions import ICMPSocketError, SocketPermissionError

from vigil import main as cli
from vigil.config import Settings
from vigil.logs import setup_logging
from vigil.notifications import LogNotifier, WebhookNotifier
from vigil.notifications.discord import DiscordNotifier
from vigil.notifications.mail import MailNotifier
from vigil.targets.registry import ConfigError, HostDef, MailConfig, ProgramCheck, SSHServer, VigilConfig

V6_HOST_CONFIG = "loop: 1m\nhosts:\n  - name: v6\n    host: 2001:db8::1\n"


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def _write(tmp_path: Path, text: str) -> str:
    p = tmp_path / "vigil.yaml"
    p.write_text(text)
    return str(p)


# ── Wiring ───────────────────────────────────────────────────────────────────


class TestBuildNotifier:
    def test_log_only_by_default(self) -> None:
        manager = cli.build_notifier(VigilConfig(loop=timedelta(minutes=1)), _settings())
        assert [type(c) for c in manager.channels] == [LogNotifier]

    def test_all_channels(self) -> None:
        config = VigilConfig(
            loop=timedelta(minutes=1),
            mail=MailConfig(server="smtp.example.com", recipients=["ops@example.com"]),
        )
        cfg = _settings(slack_webhook_url="https://hooks.slack.test/x", discord_webhook_url="https://discord.test/x")
        manager = cli.build_notifier(config, cfg)
        assert [type(c) for c in manager.channels] == [LogNotifier, MailNotifier, WebhookNotifier, DiscordNotifier]


class TestBuildScheduler:
    def test_timeout_from_config_wins(self) -> None:
        config = VigilConfig(loop=timedelta(seconds=30), timeout=2.5, hosts=[HostDef("db1", "10.0.0.5")])
        scheduler = cli.build_scheduler(config, LogNotifier(), _settings(ping_timeout=9))
        assert scheduler.interval == 30
        assert scheduler.ping_prober.timeout == 2.5

    def test_no_hosts_no_ping_prober(self) -> None:
        scheduler = cli.build_scheduler(VigilConfig(loop=timedelta(seconds=30)), LogNotifier(), _settings())
        assert scheduler.ping_prober is None

    def test_settings_timeout_used_when_config_silent(self) -> None:
        config = VigilConfig(loop=timedelta(seconds=30), hosts=[HostDef("db1", "10.0.0.5")])
        scheduler = cli.build_scheduler(config, LogNotifier(), _settings(ping_timeout=9))
        assert scheduler.ping_prober is not None
        assert scheduler.ping_prober.timeout == 9

    def test_process_command_from_settings(self) -> None:
        server = SSHServer(
            name="web1", server="web1", user="monitor", password="secret",
            programs=(ProgramCheck("app", "gunicorn"),),
        )
        config = VigilConfig(loop=timedelta(seconds=30), servers=[server])
        scheduler = cli.build_scheduler(config, LogNotifier(), _settings(process_command="pgrep -f {pattern}"))
        assert scheduler.process_probers[0].command_for(server.programs[0]) == "pgrep -f gunicorn"

    def test_process_command_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VIGIL_PROCESS_COMMAND", "pidof {pattern}")
        assert _settings().process_command == "pidof {pattern}"
        monkeypatch.delenv("VIGIL_PROCESS_COMMAND")
        assert _settings().process_command == "pgrep {pattern}"


# ── Commands ─────────────────────────────────────────────────────────────────


class TestCommands:
    def test_missing_config_exits_2(self, tmp_path: Path) -> None:
        with pytest.raises(SystemExit) as exc:
            cli.run_once(str(tmp_path / "missing.yaml"))
        assert exc.value.code == cli.EXIT_CONFIG

    def test_bad_credentials_exit_2(self, tmp_path: Path) -> None:
        p = tmp_path / "vigil.yaml"
        p.write_text("loop: 1m\nservers:\n  - server: web1\n    user: monitor\n    programs:\n      - process: nginx\n")
        with pytest.raises(SystemExit) as exc:
            cli.validate(str(p))
        assert exc.value.code == cli.EXIT_CONFIG

    def test_empty_config_check_passes(self, tmp_path: Path) -> None:
        p = tmp_path / "vigil.yaml"
        p.write_text("loop: 1m\n")
        assert cli.run_once(str(p)) == 0

    def test_validate_prints_targets(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        p = tmp_path / "vigil.yaml"
        p.write_text(
            "loop: 1m\n"
            "hosts:\n  - name: db1\n    host: 10.0.0.5\n"
            "servers:\n  - server: web1\n    user: monitor\n    password: secret\n"
            "    programs:\n      - name: app\n        process: gunicorn\n"
        )
        cli.validate(str(p))
        out = capsys.readouterr().out
        assert "db1" in out
        assert "gunicorn" in out
        assert "secret" not in out

    def test_check_subcommand(self, tmp_path: Path) -> None:
        p = tmp_path / "vigil.yaml"
        p.write_text("loop: 1m\n")
        with (
            patch("sys.argv", ["vigil", "--plain", "check", str(p)]),
            patch("vigil.main.setup_logging") as mock_setup,
            pytest.raises(SystemExit) as exc,
        ):
            cli.main()
        assert exc.value.code == 0
        mock_setup.assert_called_once()
        assert mock_setup.call_args.kwargs["rich"] is False

    def test_no_subcommand_prints_help(self) -> None:
        with (
            patch("sys.argv", ["vigil"]),
            patch("vigil.main.setup_logging"),
            pytest.raises(SystemExit) as exc,
        ):
            cli.main()
        assert exc.value.code == 1

    @pytest.mark.parametrize(
        "error",
        [
            OSError(errno.EAFNOSUPPORT, "Address family not supported by protocol"),
            ICMPSocketError("[Errno 97] Address family not supported by protocol"),
            SocketPermissionError(True),
        ],
    )
    @pytest.mark.parametrize("command", [cli.run_once, cli.run_forever])
    def test_socket_open_failure_exits_2(self, tmp_path: Path, command, error: Exception) -> None:
        def failing(is_ipv4: bool):
            raise error

        path = _write(tmp_path, V6_HOST_CONFIG)
        with (
            patch("vigil.health.ping.socket_factory", return_value=failing),
            pytest.raises(SystemExit) as exc,
        ):
            command(path)
        assert exc.value.code == cli.EXIT_CONFIG

    def test_notifier_closed_when_scheduler_cannot_be_built(self, tmp_path: Path) -> None:
        notifier = MagicMock()
        notifier.close = AsyncMock()
        path = _write(tmp_path, "loop: 1m\n")
        with (
            patch("vigil.main.build_notifier", return_value=notifier),
            patch("vigil.main.build_scheduler", side_effect=ConfigError("Could not resolve IP addr for 'db1'")),
            pytest.raises(SystemExit) as exc,
        ):
            cli.run_once(path)
        assert exc.value.code == cli.EXIT_CONFIG
        notifier.close.assert_awaited_once()


# ── Logging ──────────────────────────────────────────────────────────────────


class TestSetupLogging:
    def test_plain_format(self) -> None:
        stream = io.StringIO()
        log = setup_logging("DEBUG", stream=stream, rich=False, name="vigil-test-plain")
        log.getChild("ping").debug("hello %s", "world")
        line = stream.getvalue()
        assert "[vigil-test-plain.ping] DEBUG: hello world" in line
        assert not log.propagate

    def test_rich_handler(self) -> None:
        stream = io.StringIO()
        log = setup_logging("INFO", stream=stream, rich=True, name="vigil-test-rich")
        log.info("sweep done")
        log.debug("hidden")
        assert "sweep done" in stream.getvalue()
        assert "hidden" not in stream.getvalue()

    def test_handlers_replaced(self) -> None:
        setup_logging(stream=io.StringIO(), name="vigil-test-replace")
        log = setup_logging(stream=io.StringIO(), name="vigil-test-replace")
        assert len(log.handlers) == 1
        assert log.level == logging.INFO

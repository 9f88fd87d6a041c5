"""Entry point for the vigil health checker."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import NoReturn

from icmplib.exceptions import ICMPLibError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vigil.config import Settings, settings
from vigil.health.events import FailureEvent
from vigil.health.remote import ssh_session_factory
from vigil.health.scheduler import ProbeScheduler
from vigil.logs import setup_logging
from vigil.notifications import LogNotifier, NotificationManager, Notifier, WebhookNotifier
from vigil.notifications.discord import DiscordNotifier
from vigil.notifications.mail import MailNotifier
from vigil.targets.registry import ConfigError, TargetRegistry, VigilConfig, load_config

console = Console(stderr=True)

EXIT_FAILURES = 1
EXIT_CONFIG = 2


def build_notifier(config: VigilConfig, cfg: Settings = settings) -> NotificationManager:
    """Every configured channel plus the log."""
    channels: list[Notifier] = [LogNotifier()]
    if config.mail.enabled:
        channels.append(MailNotifier(config.mail))
    webhooks = WebhookNotifier(
        slack_webhook=cfg.slack_webhook_url,
        telegram_token=cfg.telegram_bot_token,
        telegram_chat_id=cfg.telegram_chat_id,
    )
    if webhooks.is_enabled:
        channels.append(webhooks)
    if cfg.discord_webhook_url:
        channels.append(DiscordNotifier(cfg.discord_webhook_url))
    return NotificationManager(channels)


def build_scheduler(
    config: VigilConfig,
    notifier: Notifier,
    cfg: Settings = settings,
    registry: TargetRegistry | None = None,
) -> ProbeScheduler:
    """Resolve targets and wire up probers. Raises ``ConfigError``."""
    registry = registry or TargetRegistry.from_config(config, default_zone=cfg.icmp_ipv6_zone)
    return ProbeScheduler.from_registry(
        registry,
        notifier,
        config.loop,
        timeout=config.timeout or cfg.ping_timeout,
        privileged=cfg.icmp_privileged,
        session_factory=ssh_session_factory(
            connect_timeout=cfg.ssh_connect_timeout,
            command_timeout=cfg.ssh_command_timeout,
            strict_host_key=cfg.ssh_strict_host_key,
        ),
        log_lines=cfg.ssh_log_lines,
        command_template=cfg.process_command,
    )


async def _run(config: VigilConfig, once: bool = False) -> list[FailureEvent]:
    notifier = build_notifier(config)
    try:
        scheduler = build_scheduler(config, notifier)
        if not once:
            await scheduler.run_forever()
            return []
        if scheduler.ping_prober is not None:
            await scheduler.ping_prober.start()
        try:
            return await scheduler.run_sweep()
        finally:
            if scheduler.ping_prober is not None:
                await scheduler.ping_prober.stop()
    finally:
        await notifier.close()


def _load(path: str) -> VigilConfig:
    try:
        return load_config(path)
    except ConfigError as e:
        _fatal(e)


def _fatal(error: Exception) -> NoReturn:
    console.print(f"[bold red]Fatal:[/bold red] {error}")
    sys.exit(EXIT_CONFIG)


def run_forever(path: str) -> None:
    """Sweep now and then once per configured interval, until interrupted."""
    config = _load(path)
    console.print(Panel(f"Sweeping every {config.loop}", title="vigil", style="bold green"))
    try:
        asyncio.run(_run(config))
    except (ConfigError, ICMPLibError, OSError) as e:
        _fatal(e)
    except KeyboardInterrupt:
        console.print("[dim]Interrupted[/dim]")


def run_once(path: str) -> int:
    """Single sweep; returns the process exit status."""
    config = _load(path)
    try:
        events = asyncio.run(_run(config, once=True))
    except (ConfigError, ICMPLibError, OSError) as e:
        _fatal(e)
    if events:
        console.print(f"[bold red]{len(events)} failure(s)[/bold red]")
        return EXIT_FAILURES
    console.print("[bold green]All checks passed[/bold green]")
    return 0


def validate(path: str) -> None:
    """Load, resolve and print the configured targets without probing."""
    config = _load(path)
    try:
        registry = TargetRegistry.from_config(config, default_zone=settings.icmp_ipv6_zone)
        scheduler = build_scheduler(config, LogNotifier(), registry=registry)
    except ConfigError as e:
        _fatal(e)

    data = registry.to_dict()
    hosts = Table(title="Ping targets")
    for col in ("name", "address", "ip", "family"):
        hosts.add_column(col)
    for h in data["hosts"]:
        hosts.add_row(h["name"], h["address"], h["ip"], h["family"])

    programs = Table(title="Process checks")
    for col in ("server", "user", "auth", "program", "process", "log"):
        programs.add_column(col)
    for s in data["servers"]:
        for p in s["programs"]:
            programs.add_row(f"{s['server']}:{s['port']}", s["user"], s["auth"], p["name"], p["process"], p["log"])

    out = Console()
    out.print(hosts)
    out.print(programs)
    out.print(f"[dim]Sweep interval: {scheduler.interval:.0f}s, {len(scheduler.probers())} probers[/dim]")


def main() -> None:
    parser = argparse.ArgumentParser(description="Ping hosts and check remote processes on a schedule")
    parser.add_argument("--log-level", default=settings.log_level, help="DEBUG, INFO, WARNING, ...")
    parser.add_argument("--plain", action="store_true", help="Plain log lines instead of rich output")
    sub = parser.add_subparsers(dest="command")

    run_parser = sub.add_parser("run", help="Sweep forever at the configured interval")
    run_parser.add_argument("config", nargs="?", default=settings.config_file)

    check_parser = sub.add_parser("check", help="Run a single sweep and exit")
    check_parser.add_argument("config", nargs="?", default=settings.config_file)

    validate_parser = sub.add_parser("validate", help="Load the config and show the targets")
    validate_parser.add_argument("config", nargs="?", default=settings.config_file)

    args = parser.parse_args()
    setup_logging(args.log_level, rich=settings.log_rich and not args.plain)
    logging.getLogger("paramiko").setLevel(logging.WARNING)

    if args.command == "run":
        run_forever(args.config)
    elif args.command == "check":
        sys.exit(run_once(args.config))
    elif args.command == "validate":
        validate(args.config)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()

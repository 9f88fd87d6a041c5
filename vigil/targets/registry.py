"""Target registry: loads the YAML config file and provides typed models.

Single source of truth for what gets probed. The scheduler builds its probers
from a ``TargetRegistry``; nothing re-reads the file after startup.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import socket
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

import yaml

logger = logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22
DEFAULT_MAIL_PORT = 587
DEFAULT_SUBJECT = "Chair Report"


class ConfigError(Exception):
    """Raised for startup configuration problems. Always fatal."""


# ── Durations ────────────────────────────────────────────────────────────────

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(text: str) -> timedelta:
    """Parse a duration like ``"1h30m"``, ``"45s"`` or ``"250ms"``.

    Units are required on every component except for a bare ``"0"``.
    Raises ``ConfigError`` on anything else.
    """
    raw = str(text).strip()
    if not raw:
        raise ConfigError("Empty duration")

    body = raw
    sign = 1
    if body[0] in "+-":
        sign = -1 if body[0] == "-" else 1
        body = body[1:]
    if body == "0":
        return timedelta(0)

    pos = 0
    total = 0.0
    while pos < len(body):
        m = _DURATION_PART.match(body, pos)
        if not m:
            raise ConfigError(f"Could not parse duration {raw!r}")
        total += float(m.group(1)) * _UNIT_SECONDS[m.group(2)]
        pos = m.end()
    if pos == 0:
        raise ConfigError(f"Could not parse duration {raw!r}")
    return timedelta(seconds=sign * total)


# ── Data models ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PingTarget:
    """A host to ping, resolved once at registration."""

    name: str
    host_address: str
    resolved_ip: str  # without IPv6 zone; the reply-table key
    is_ipv4: bool
    zone: str = ""

    @property
    def send_address(self) -> str:
        return f"{self.resolved_ip}%{self.zone}" if self.zone else self.resolved_ip


@dataclass(frozen=True)
class ProgramCheck:
    """One program whose process must be present on a server."""

    name: str
    process: str
    log_file: str = ""


@dataclass(frozen=True)
class SSHServer:
    """An SSH session descriptor plus the programs checked through it."""

    name: str
    server: str
    user: str = ""
    password: str = ""
    key_path: str = ""
    port: int = DEFAULT_SSH_PORT
    programs: tuple[ProgramCheck, ...] = ()


@dataclass
class MailConfig:
    server: str = ""
    port: int = DEFAULT_MAIL_PORT
    username: str = ""
    password: str = ""
    sender: str = ""
    recipients: list[str] = field(default_factory=list)
    subject: str = DEFAULT_SUBJECT
    starttls: bool = True

    @property
    def enabled(self) -> bool:
        return bool(self.server and self.recipients)


@dataclass
class HostDef:
    name: str
    host: str


@dataclass
class VigilConfig:
    """Parsed contents of the YAML config file."""

    loop: timedelta
    timeout: float | None = None
    mail: MailConfig = field(default_factory=MailConfig)
    hosts: list[HostDef] = field(default_factory=list)
    servers: list[SSHServer] = field(default_factory=list)


# ── Resolution ───────────────────────────────────────────────────────────────

Resolver = Callable[[str], str]


def resolve_address(address: str) -> str:
    """Resolve a hostname to one IP string, preferring IPv4 like ``ping``."""
    try:
        infos = socket.getaddrinfo(address, None, proto=socket.IPPROTO_TCP)
    except socket.gaierror as e:
        raise ConfigError(f"Could not resolve IP addr for {address!r}: {e}") from e

    v4 = [i[4][0] for i in infos if i[0] == socket.AF_INET]
    v6 = [i[4][0] for i in infos if i[0] == socket.AF_INET6]
    candidates = v4 or v6
    if not candidates:
        raise ConfigError(f"No usable address for {address!r}")
    return candidates[0]


def make_ping_target(
    name: str,
    address: str,
    resolver: Resolver | None = None,
    default_zone: str = "",
) -> PingTarget:
    """Build a ``PingTarget``; IP literals skip DNS entirely.

    ``default_zone`` is applied to IPv6 link-local addresses that name no
    zone of their own.
    """
    literal, _, zone = address.partition("%")
    try:
        ip = ipaddress.ip_address(literal)
    except ValueError:
        resolved = (resolver or resolve_address)(address)
        literal, _, zone = resolved.partition("%")
        try:
            ip = ipaddress.ip_address(literal)
        except ValueError as e:
            raise ConfigError(f"Resolver returned a non-IP for {address!r}: {resolved!r}") from e

    if ip.version == 6 and ip.is_link_local and not zone:
        zone = default_zone

    logger.info("Got addr %s, zone %s for %s", ip, zone or "-", name)
    return PingTarget(
        name=name,
        host_address=address,
        resolved_ip=str(ip),
        is_ipv4=ip.version == 4,
        zone=zone,
    )


# ── Registry ─────────────────────────────────────────────────────────────────


class TargetRegistry:
    """The configured probe targets, in registration order."""

    def __init__(self, resolver: Resolver | None = None, default_zone: str = "") -> None:
        self._resolver = resolver
        self._default_zone = default_zone
        self._ping_targets: list[PingTarget] = []
        self._servers: list[SSHServer] = []

    @classmethod
    def from_config(
        cls,
        config: VigilConfig,
        resolver: Resolver | None = None,
        default_zone: str = "",
    ) -> TargetRegistry:
        registry = cls(resolver=resolver, default_zone=default_zone)
        for host in config.hosts:
            registry.add_host(host.name, host.host)
        for server in config.servers:
            registry.add_server(server)
        logger.info(
            "Registered %d ping targets and %d servers (%d programs)",
            len(registry.ping_targets),
            len(registry.servers),
            sum(len(s.programs) for s in registry.servers),
        )
        return registry

    @property
    def ping_targets(self) -> list[PingTarget]:
        return list(self._ping_targets)

    @property
    def servers(self) -> list[SSHServer]:
        return list(self._servers)

    def add_host(self, name: str, address: str) -> PingTarget:
        if not address:
            raise ConfigError(f"Host {name!r} has no address")
        target = make_ping_target(name or address, address, self._resolver, self._default_zone)
        self._ping_targets.append(target)
        return target

    def add_server(self, server: SSHServer) -> None:
        self._servers.append(server)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for display; credentials are never included."""
        return {
            "hosts": [
                {
                    "name": t.name,
                    "address": t.host_address,
                    "ip": t.send_address,
                    "family": "ipv4" if t.is_ipv4 else "ipv6",
                }
                for t in self._ping_targets
            ],
            "servers": [
                {
                    "name": s.name,
                    "server": s.server,
                    "user": s.user,
                    "port": s.port,
                    "auth": "key" if s.key_path else "password",
                    "programs": [
                        {"name": p.name, "process": p.process, "log": p.log_file}
                        for p in s.programs
                    ],
                }
                for s in self._servers
            ],
        }


# ── Parsers ──────────────────────────────────────────────────────────────────


def load_config(path: str | Path) -> VigilConfig:
    """Read and parse the YAML config. Any problem raises ``ConfigError``."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Could not open config file {path}: {e}") from e

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not load config {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config {path} must be a mapping")
    return parse_config(raw)


def parse_config(raw: dict[str, Any]) -> VigilConfig:
    if "loop" not in raw:
        raise ConfigError("Config is missing 'loop' (sweep interval)")
    loop = parse_duration(raw["loop"])
    if loop <= timedelta(0):
        raise ConfigError(f"Sweep interval must be positive, got {raw['loop']!r}")

    timeout = None
    if raw.get("timeout") is not None:
        timeout = parse_duration(raw["timeout"]).total_seconds()
        if timeout <= 0:
            raise ConfigError(f"Ping timeout must be positive, got {raw['timeout']!r}")

    hosts = []
    for h in raw.get("hosts") or []:
        if not isinstance(h, dict) or not h.get("host"):
            raise ConfigError(f"Malformed host entry: {h!r}")
        hosts.append(HostDef(name=str(h.get("name") or h["host"]), host=str(h["host"])))

    servers = [_parse_server(s) for s in raw.get("servers") or []]

    return VigilConfig(
        loop=loop,
        timeout=timeout,
        mail=_parse_mail(raw.get("mail") or {}),
        hosts=hosts,
        servers=servers,
    )


def _parse_mail(raw: dict[str, Any]) -> MailConfig:
    recipients = raw.get("recipients") or []
    if isinstance(recipients, str):
        recipients = [r.strip() for r in recipients.split(",") if r.strip()]
    try:
        port = int(raw.get("port") or DEFAULT_MAIL_PORT)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Mail port must be an integer, got {raw.get('port')!r}") from e
    return MailConfig(
        server=raw.get("server", ""),
        port=port,
        username=raw.get("username", ""),
        password=raw.get("password", ""),
        sender=raw.get("sender", "") or raw.get("username", ""),
        recipients=list(recipients),
        subject=raw.get("subject", DEFAULT_SUBJECT),
        starttls=bool(raw.get("starttls", True)),
    )


def _parse_server(raw: Any) -> SSHServer:
    if not isinstance(raw, dict):
        raise ConfigError(f"Malformed server entry: {raw!r}")

    programs = []
    for p in raw.get("programs") or []:
        if not isinstance(p, dict) or not p.get("process"):
            raise ConfigError(f"Malformed program entry: {p!r}")
        programs.append(
            ProgramCheck(
                name=str(p.get("name") or p["process"]),
                process=str(p["process"]),
                log_file=str(p.get("log") or ""),
            )
        )

    port = raw.get("port") or DEFAULT_SSH_PORT
    try:
        port = int(port)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"SSH port must be an integer, got {port!r}") from e

    server = str(raw.get("server") or "")
    return SSHServer(
        name=str(raw.get("name") or server),
        server=server,
        user=str(raw.get("user") or ""),
        password=str(raw.get("password") or ""),
        key_path=str(raw.get("key") or ""),
        port=port,
        programs=tuple(programs),
    )

"""Remote command execution over SSH (paramiko).

Blocking by nature; the process prober calls into it from an executor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import paramiko

from vigil.targets.registry import SSHServer

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_COMMAND_TIMEOUT = 30.0

_MAX_OUTPUT = 65536


@dataclass
class CommandResult:
    stdout: str
    stderr: str
    exit_status: int


class RemoteCommandError(Exception):
    """The remote command ran but reported a failure of its own."""

    def __init__(self, command: str, result: CommandResult) -> None:
        self.command = command
        self.result = result
        detail = result.stderr.strip() or result.stdout.strip() or "no output"
        super().__init__(f"{command!r} exited with status {result.exit_status}: {detail[:200]}")


class RemoteSession(Protocol):
    def run(self, command: str) -> CommandResult: ...

    def close(self) -> None: ...


SessionFactory = Callable[[SSHServer], RemoteSession]


class SSHSession:
    """One lazily opened SSH connection reused for every command."""

    def __init__(
        self,
        server: SSHServer,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        strict_host_key: bool = False,
    ) -> None:
        self.server = server
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.strict_host_key = strict_host_key
        self._client: paramiko.SSHClient | None = None

    def _connect(self) -> paramiko.SSHClient:
        if self._client is not None:
            return self._client

        client = paramiko.SSHClient()
        if self.strict_host_key:
            client.load_system_host_keys()
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        kwargs: dict[str, Any] = {
            "hostname": self.server.server,
            "port": self.server.port,
            "username": self.server.user,
            "timeout": self.connect_timeout,
            "auth_timeout": self.connect_timeout,
            "banner_timeout": self.connect_timeout,
            "look_for_keys": False,
            "allow_agent": False,
        }
        if self.server.key_path:
            kwargs["key_filename"] = self.server.key_path
        else:
            kwargs["password"] = self.server.password

        try:
            client.connect(**kwargs)
        except Exception:
            client.close()
            raise
        logger.debug("SSH connected to %s@%s:%d", self.server.user, self.server.server, self.server.port)
        self._client = client
        return client

    def run(self, command: str) -> CommandResult:
        client = self._connect()
        _, stdout, stderr = client.exec_command(command, timeout=self.command_timeout)
        out = stdout.read().decode("utf-8", errors="replace")[:_MAX_OUTPUT]
        err = stderr.read().decode("utf-8", errors="replace")[:_MAX_OUTPUT]
        rc = stdout.channel.recv_exit_status()
        return CommandResult(stdout=out, stderr=err, exit_status=int(rc))

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


def ssh_session_factory(
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    strict_host_key: bool = False,
) -> SessionFactory:
    def _open(server: SSHServer) -> RemoteSession:
        return SSHSession(
            server,
            connect_timeout=connect_timeout,
            command_timeout=command_timeout,
            strict_host_key=strict_host_key,
        )

    return _open

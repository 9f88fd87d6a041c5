"""Remote process prober: is each configured program running on its host?

One SSH session per server per sweep, shared by all of that server's program
checks. A session failure ends the sweep for that server.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import shlex
from collections.abc import AsyncIterator
from pathlib import Path

import paramiko

from vigil.health.events import FailureEvent, ProcessMissing, RemoteSessionError
from vigil.health.remote import (
    CommandResult,
    RemoteCommandError,
    RemoteSession,
    SessionFactory,
    ssh_session_factory,
)
from vigil.targets.registry import DEFAULT_SSH_PORT, ConfigError, ProgramCheck, SSHServer

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = "pgrep {pattern}"
LOG_COMMAND = "tail -n {lines} {path}"
DEFAULT_LOG_LINES = 20

# pgrep: 0 = match, 1 = no match, anything higher = the command itself failed
_NO_MATCH_STATUS = 1

SESSION_ERRORS = (paramiko.SSHException, OSError, EOFError, RemoteCommandError)


def validate_server(server: SSHServer) -> SSHServer:
    """Check an SSH descriptor, returning it normalized. Raises ``ConfigError``."""
    if not server.server:
        raise ConfigError("Must specify an SSH server")
    if not server.user:
        raise ConfigError(f"Must specify an SSH user for {server.server}")

    if server.key_path:
        key_path = Path(server.key_path).expanduser()
        if not key_path.exists():
            raise ConfigError(f"Key file for SSH does not exist: {server.key_path}")
        server = dataclasses.replace(server, key_path=str(key_path))
        if server.password:
            logger.warning("Both key and password set for %s; using the key", server.server)
            server = dataclasses.replace(server, password="")
    elif not server.password:
        raise ConfigError(f"Must provide either a password or keyfile for SSH to {server.server}")

    if not server.port:
        server = dataclasses.replace(server, port=DEFAULT_SSH_PORT)
    return server


class ProcessProber:
    """Checks the programs configured for one SSH server."""

    def __init__(
        self,
        server: SSHServer,
        session_factory: SessionFactory | None = None,
        command_template: str = DEFAULT_COMMAND,
        log_lines: int = DEFAULT_LOG_LINES,
        log: logging.Logger | None = None,
    ) -> None:
        self.server = validate_server(server)
        self._session_factory = session_factory or ssh_session_factory()
        self._command_template = command_template
        self._log_lines = log_lines
        self._log = log or logger
        self._log.info(
            "SSH: %s@%s:%d (%s auth, %d programs)",
            self.server.user,
            self.server.server,
            self.server.port,
            "key" if self.server.key_path else "password",
            len(self.server.programs),
        )

    @property
    def programs(self) -> list[ProgramCheck]:
        return list(self.server.programs)

    def command_for(self, program: ProgramCheck) -> str:
        return self._command_template.format(pattern=shlex.quote(program.process))

    async def run(self) -> AsyncIterator[FailureEvent]:
        """Yield a failure event for every program not confirmed running."""
        if not self.server.programs:
            return

        loop = asyncio.get_running_loop()
        session: RemoteSession | None = None
        try:
            for program in self.server.programs:
                self._log.info("Checking %s on host %s", program.name, self.server.server)
                try:
                    if session is None:
                        session = self._session_factory(self.server)
                    running = await loop.run_in_executor(None, self._is_running, session, program)
                except SESSION_ERRORS as e:
                    self._log.error(
                        "Could not check %s on %s, skipping remaining programs: %s",
                        program.name, self.server.server, e,
                    )
                    yield RemoteSessionError(
                        server_address=self.server.server,
                        program_name=program.name,
                        process_pattern=program.process,
                        cause=str(e) or type(e).__name__,
                    )
                    break

                if running:
                    continue

                self._log.error("Program %s (%s) is not running on %s", program.name, program.process, self.server.server)
                log_output = await loop.run_in_executor(None, self._read_log, session, program)
                yield ProcessMissing(
                    program_name=program.name,
                    process_pattern=program.process,
                    server_address=self.server.server,
                    log_output=log_output,
                )
        finally:
            if session is not None:
                try:
                    session.close()
                except SESSION_ERRORS:
                    self._log.debug("Error closing session to %s", self.server.server, exc_info=True)

    def _is_running(self, session: RemoteSession, program: ProgramCheck) -> bool:
        command = self.command_for(program)
        result: CommandResult = session.run(command)
        if result.exit_status > _NO_MATCH_STATUS:
            raise RemoteCommandError(command, result)
        return bool(result.stdout.strip())

    def _read_log(self, session: RemoteSession, program: ProgramCheck) -> str:
        if not program.log_file:
            return ""
        command = LOG_COMMAND.format(lines=self._log_lines, path=shlex.quote(program.log_file))
        try:
            result = session.run(command)
        except SESSION_ERRORS as e:
            return f"Could not read {program.log_file}: {e}"
        if result.exit_status != 0:
            return f"Could not read {program.log_file}: {result.stderr.strip() or 'exit status ' + str(result.exit_status)}"
        return result.stdout.rstrip()

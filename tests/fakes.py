"""Test doubles: a simulated ICMP network, scripted SSH sessions, a recording notifier."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

from icmplib.exceptions import ICMPSocketError, TimeoutExceeded
from icmplib.models import ICMPReply, ICMPRequest

from vigil.health.events import FailureEvent
from vigil.health.icmp import ICMPV4_ECHO_REPLY, ICMPV6_ECHO_REPLY
from vigil.health.remote import CommandResult


def echo_reply(
    is_ipv4: bool, source: str | None, identifier: int, sequence: int = 1, msg_type: int | None = None
) -> ICMPReply:
    if msg_type is None:
        msg_type = ICMPV4_ECHO_REPLY if is_ipv4 else ICMPV6_ECHO_REPLY
    return ICMPReply(
        source=source,
        family=4 if is_ipv4 else 6,
        id=identifier,
        sequence=sequence,
        type=msg_type,
        code=0,
        bytes_received=20,
        time=time.time(),
    )


class FakeIcmpSocket:
    """Stands in for an icmplib socket; replies come from ``FakeIcmpNetwork``."""

    filters_identifier = True

    def __init__(self, network: FakeIcmpNetwork, is_ipv4: bool) -> None:
        self.network = network
        self.is_ipv4 = is_ipv4
        self.closed = False
        self._inbox: asyncio.Queue[ICMPReply] = asyncio.Queue()

    async def send(self, request: ICMPRequest) -> None:
        if self.closed:
            raise ICMPSocketError("socket closed")
        if self.network.send_error is not None:
            raise self.network.send_error
        self.network.sent.append(request)
        if self.network.break_reads_on_send:
            # the reply is lost with the broken socket
            self.network.read_errors += 1
            return
        host = request.destination.partition("%")[0]
        if host in self.network.responsive:
            identifier = self.network.reply_identifier
            if identifier is None:
                identifier = request.id
            reply = echo_reply(self.is_ipv4, host, identifier, request.sequence, self.network.reply_type)
            self._inbox.put_nowait(reply)

    async def receive(self, timeout: float) -> ICMPReply:
        if self.network.read_errors > 0:
            self.network.read_errors -= 1
            raise ICMPSocketError("simulated read error")
        try:
            return await asyncio.wait_for(self._inbox.get(), timeout)
        except asyncio.TimeoutError:
            raise TimeoutExceeded(timeout) from None

    def inject(self, reply: ICMPReply) -> None:
        self._inbox.put_nowait(reply)

    def close(self) -> None:
        self.closed = True


@dataclass
class FakeIcmpNetwork:
    """Addresses in ``responsive`` answer every echo request.

    ``reopen_error`` is raised by every open after the first one.
    """

    responsive: set[str] = field(default_factory=set)
    sockets: list[FakeIcmpSocket] = field(default_factory=list)
    sent: list[ICMPRequest] = field(default_factory=list)
    read_errors: int = 0
    break_reads_on_send: bool = False
    send_error: Exception | None = None
    reopen_error: Exception | None = None
    reply_identifier: int | None = None
    reply_type: int | None = None
    opens: int = 0

    def factory(self, is_ipv4: bool) -> FakeIcmpSocket:
        self.opens += 1
        if self.reopen_error is not None and self.sockets:
            raise self.reopen_error
        sock = FakeIcmpSocket(self, is_ipv4)
        self.sockets.append(sock)
        return sock

    def current(self, is_ipv4: bool = True) -> FakeIcmpSocket:
        return [s for s in self.sockets if s.is_ipv4 == is_ipv4][-1]

    @property
    def destinations(self) -> list[str]:
        return [r.destination for r in self.sent]


class StubSession:
    """Scripted remote session: ``results`` maps a command substring to an outcome.

    An outcome is a ``CommandResult``, a stdout string, or an exception to raise.
    """

    def __init__(self, results: dict[str, object] | None = None, default: object = "1234\n") -> None:
        self.results = results or {}
        self.default = default
        self.commands: list[str] = []
        self.closed = False

    def run(self, command: str) -> CommandResult:
        self.commands.append(command)
        outcome = self.default
        for needle, result in self.results.items():
            if needle in command:
                outcome = result
                break
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, CommandResult):
            return outcome
        text = str(outcome)
        return CommandResult(stdout=text, stderr="", exit_status=0 if text.strip() else 1)

    def close(self) -> None:
        self.closed = True


class RecordingNotifier:
    def __init__(self, result: bool = True) -> None:
        self.events: list[FailureEvent] = []
        self.result = result

    async def deliver(self, event: FailureEvent) -> bool:
        self.events.append(event)
        return self.result

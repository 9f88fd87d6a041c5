"""ICMP reachability prober.

One ``IcmpListener`` per address family runs for the life of the prober. It
owns its socket: senders go through ``IcmpListener.send`` and replies go out
through the shared ``ReplyTable``. Timeouts are not timers on the caller's
side; ``send`` arms a read deadline and the listener reports the expiry on
the shared error queue, which is what wakes a waiting ``probe``.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from collections.abc import AsyncIterator, Iterable

from icmplib.exceptions import ICMPSocketError, TimeoutExceeded
from icmplib.models import ICMPReply, ICMPRequest

from vigil.health.events import HostUnreachable
from vigil.health.icmp import describe, echo_identifier, echo_request, is_echo_reply
from vigil.health.replies import ReplyTable
from vigil.health.sockets import IcmpTransport, SocketFactory, socket_factory
from vigil.targets.registry import PingTarget

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0  # seconds

# Longest the listener blocks before re-checking for a newly armed deadline
_POLL_INTERVAL = 0.25

# Reopen backoff when the socket cannot be recreated
_REOPEN_BASE = 0.5
_REOPEN_MAX = 30.0
_BACKOFF_FACTOR = 2.0


class PingError(Exception):
    """Base class for a failed echo exchange."""


class PingTimeout(PingError):
    """No echo reply arrived before the read deadline."""


class PingSendError(PingError):
    """The echo request could not be sent."""


class ListenerError(PingError):
    """The listener hit a socket read or parse error and is reopening its socket."""


class _DeadlineExceeded(Exception):
    pass


# icmplib wraps socket failures in ICMPSocketError; other transports raise OSError
_SOCKET_ERRORS = (ICMPSocketError, OSError)


def _family(is_ipv4: bool) -> str:
    return "ipv4" if is_ipv4 else "ipv6"


def _reply_address(reply: ICMPReply) -> str:
    """Sender of ``reply`` without any IPv6 zone; ValueError if it is not an IP."""
    if not reply.source:
        raise ValueError("reply has no source address")
    address = reply.source.partition("%")[0]
    ipaddress.ip_address(address)
    return address


class IcmpListener:
    """Supervised receive loop for one address family.

    Lifecycle:
        listener = IcmpListener(True, factory, replies, errors, identifier)
        await listener.start()
        await listener.send(echo_request("10.0.0.5", identifier), timeout=2.0)
        ...
        await listener.stop()
    """

    def __init__(
        self,
        is_ipv4: bool,
        factory: SocketFactory,
        replies: ReplyTable,
        errors: asyncio.Queue[PingError],
        identifier: int,
        log: logging.Logger | None = None,
        poll_interval: float = _POLL_INTERVAL,
    ) -> None:
        self.is_ipv4 = is_ipv4
        self._factory = factory
        self._replies = replies
        self._errors = errors
        self._identifier = identifier
        self._log = log or logger
        self._poll_interval = poll_interval

        self._sock: IcmpTransport | None = None
        self._lock = asyncio.Lock()
        self._deadline: float | None = None
        self._task: asyncio.Task[None] | None = None
        self.reconnects = 0

    @property
    def family(self) -> str:
        return _family(self.is_ipv4)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Open the socket and start listening. Opening errors propagate."""
        if self.running:
            return
        async with self._lock:
            self._sock = self._factory(self.is_ipv4)
        self._task = asyncio.create_task(self._supervise(), name=f"icmp-listener-{self.family}")
        self._log.info("Listening for %s echo replies on %r", self.family, self._sock)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        async with self._lock:
            if self._sock is not None:
                self._sock.close()
                self._sock = None
            self._deadline = None

    async def send(self, request: ICMPRequest, timeout: float) -> None:
        """Arm the read deadline and send ``request``."""
        loop = asyncio.get_running_loop()
        async with self._lock:
            if self._sock is None:
                raise PingSendError(f"{self.family} socket is not open")
            self._deadline = loop.time() + timeout
            try:
                await self._sock.send(request)
            except _SOCKET_ERRORS as e:
                self._deadline = None
                raise PingSendError(f"Could not send ping to {request.destination}: {e}") from e

    # -- Receive loop -------------------------------------------------------

    async def _supervise(self) -> None:
        while True:
            try:
                await self._listen()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log.exception("%s listener crashed, restarting", self.family)
                self._publish(ListenerError(f"{self.family} listener restarted: {e}"))
                await self._reopen()

    async def _listen(self) -> None:
        # publish before reopening: reopen can back off indefinitely
        while True:
            try:
                reply = await self._receive()
            except _DeadlineExceeded:
                self._publish(PingTimeout(f"No {self.family} echo reply before the read deadline"))
                continue
            except _SOCKET_ERRORS as e:
                self._publish(ListenerError(f"Could not read to listen for ping: {e}"))
                await self._reopen()
                continue

            if reply is None:
                continue

            try:
                address = _reply_address(reply)
            except ValueError as e:
                self._publish(ListenerError(f"Could not parse ping message: {e}"))
                await self._reopen()
                continue

            if not is_echo_reply(reply, self.is_ipv4):
                self._log.debug(
                    "Got %s (type %d, code %d) from %s",
                    describe(reply, self.is_ipv4), reply.type, reply.code, address,
                )
                continue
            if self._sock.filters_identifier and reply.id != self._identifier:
                continue

            if self._replies.deliver(address):
                self._deadline = None
                self._log.info("Got %s ping from %s", self.family, address)
            else:
                self._log.debug("Dropping unexpected %s echo reply from %s", self.family, address)

    async def _receive(self) -> ICMPReply | None:
        """Wait one poll slice for a reply.

        Returns ``None`` when the slice ends quietly and raises
        ``_DeadlineExceeded`` once an armed deadline has passed.
        """
        loop = asyncio.get_running_loop()
        wait = self._poll_interval
        if self._deadline is not None:
            remaining = self._deadline - loop.time()
            if remaining <= 0:
                self._deadline = None
                raise _DeadlineExceeded
            wait = min(wait, remaining)
        try:
            return await self._sock.receive(wait)
        except TimeoutExceeded:
            if self._deadline is not None and loop.time() >= self._deadline:
                self._deadline = None
                raise _DeadlineExceeded from None
            return None

    async def _reopen(self) -> None:
        """Close and recreate the socket, retrying with backoff until it opens.

        The socket stays ``None`` while retrying, so ``send`` fails fast.
        """
        delay = _REOPEN_BASE
        while True:
            async with self._lock:
                if self._sock is not None:
                    try:
                        self._sock.close()
                    except OSError:
                        self._log.debug("Error closing %s socket", self.family, exc_info=True)
                self._sock = None
                self._deadline = None
                try:
                    self._sock = self._factory(self.is_ipv4)
                    self.reconnects += 1
                    self._log.warning("Reopened %s icmp socket (%d so far)", self.family, self.reconnects)
                    return
                except _SOCKET_ERRORS as e:
                    self._log.error("Could not listen %s icmp socket: %s (retry in %.1fs)", self.family, e, delay)
            await asyncio.sleep(delay)
            delay = min(delay * _BACKOFF_FACTOR, _REOPEN_MAX)

    def _publish(self, error: PingError) -> None:
        self._log.debug("%s listener: %s", self.family, error)
        self._errors.put_nowait(error)


class PingProber:
    """Pings every registered target in turn and reports the silent ones."""

    def __init__(
        self,
        targets: Iterable[PingTarget],
        timeout: float = DEFAULT_TIMEOUT,
        factory: SocketFactory | None = None,
        privileged: bool = False,
        identifier: int | None = None,
        log: logging.Logger | None = None,
        poll_interval: float = _POLL_INTERVAL,
    ) -> None:
        self._targets = list(targets)
        self.timeout = timeout
        self._factory = factory or socket_factory(privileged)
        self._identifier = echo_identifier() if identifier is None else identifier
        self._log = log or logger
        self._poll_interval = poll_interval

        self._replies = ReplyTable()
        self._errors: asyncio.Queue[PingError] = asyncio.Queue()
        self._listeners: dict[bool, IcmpListener] = {}

    @property
    def targets(self) -> list[PingTarget]:
        return list(self._targets)

    @property
    def listeners(self) -> dict[str, IcmpListener]:
        return {lst.family: lst for lst in self._listeners.values()}

    async def start(self) -> None:
        """Start one listener per address family in use."""
        for is_ipv4 in sorted({t.is_ipv4 for t in self._targets}, reverse=True):
            if is_ipv4 in self._listeners:
                continue
            listener = IcmpListener(
                is_ipv4,
                self._factory,
                self._replies,
                self._errors,
                self._identifier,
                log=self._log,
                poll_interval=self._poll_interval,
            )
            await listener.start()
            self._listeners[is_ipv4] = listener

    async def stop(self) -> None:
        for listener in self._listeners.values():
            await listener.stop()
        self._listeners.clear()

    async def __aenter__(self) -> PingProber:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()

    async def probe(self, target: PingTarget, timeout: float | None = None) -> None:
        """Send one echo request and wait for its reply.

        Raises ``PingTimeout``, ``PingSendError`` or ``ListenerError``.
        """
        listener = self._listeners.get(target.is_ipv4)
        if listener is None:
            raise PingSendError(f"No {_family(target.is_ipv4)} listener running")

        self._drain_errors()
        reply = self._replies.register(target.resolved_ip)
        try:
            request = echo_request(target.send_address, self._identifier)
            await listener.send(request, timeout or self.timeout)

            failure = asyncio.ensure_future(self._errors.get())
            try:
                done, _ = await asyncio.wait({reply, failure}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                if not failure.done():
                    failure.cancel()

            if reply in done and not reply.cancelled():
                return
            raise failure.result()
        finally:
            self._replies.discard(target.resolved_ip, reply)

    async def run(self) -> AsyncIterator[HostUnreachable]:
        """Probe targets in registration order, yielding one event per failure."""
        if not self._listeners:
            await self.start()
        for target in self._targets:
            self._log.info("Pinging %s (%s)", target.name, target.send_address)
            try:
                await self.probe(target)
            except PingError as e:
                self._log.error("Host %s (%s) failed to respond: %s", target.name, target.host_address, e)
                yield HostUnreachable(
                    target_name=target.name,
                    address=target.host_address,
                    cause=str(e),
                )

    def _drain_errors(self) -> None:
        while True:
            try:
                stale = self._errors.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._log.debug("Discarding stale listener error: %s", stale)

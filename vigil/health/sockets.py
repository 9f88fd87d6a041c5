"""icmplib sockets behind an asyncio send/receive surface.

``privileged=True`` opens ``SOCK_RAW`` (root or CAP_NET_RAW); the default
``SOCK_DGRAM`` ICMP socket works unprivileged on Linux once
``net.ipv4.ping_group_range`` covers the process group. With datagram
sockets the kernel rewrites the echo identifier, so replies cannot be
filtered by it.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Protocol

from icmplib.models import ICMPReply, ICMPRequest
from icmplib.sockets import ICMPSocket, ICMPv4Socket, ICMPv6Socket


class IcmpTransport(Protocol):
    """What an ``IcmpListener`` needs from its socket.

    ``receive`` raises ``icmplib.TimeoutExceeded`` when nothing arrives within
    ``timeout`` and ``icmplib.ICMPSocketError`` on any other socket failure.
    """

    is_ipv4: bool
    filters_identifier: bool

    async def send(self, request: ICMPRequest) -> None: ...

    async def receive(self, timeout: float) -> ICMPReply: ...

    def close(self) -> None: ...


SocketFactory = Callable[[bool], IcmpTransport]


class IcmpSocket:
    """An icmplib socket for one address family.

    icmplib's ``AsyncSocket`` drops the reply source, which is what replies
    are matched on, so blocking receives run in the default executor.
    """

    def __init__(self, is_ipv4: bool, privileged: bool = False) -> None:
        self.is_ipv4 = is_ipv4
        self.privileged = privileged
        self.filters_identifier = privileged
        family = ICMPv4Socket if is_ipv4 else ICMPv6Socket
        self._sock: ICMPSocket = family(privileged=privileged)

    @property
    def family_name(self) -> str:
        return "ipv4" if self.is_ipv4 else "ipv6"

    async def send(self, request: ICMPRequest) -> None:
        self._sock.send(request)

    async def receive(self, timeout: float) -> ICMPReply:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._sock.receive, None, timeout)

    def close(self) -> None:
        self._sock.close()

    def __repr__(self) -> str:
        mode = "raw" if self.privileged else "dgram"
        state = "closed" if self._sock.is_closed else "open"
        return f"<IcmpSocket {self.family_name} {mode} {state}>"


def socket_factory(privileged: bool = False) -> SocketFactory:
    """Return a factory opening real ICMP sockets in the given mode."""

    def _open(is_ipv4: bool) -> IcmpTransport:
        return IcmpSocket(is_ipv4, privileged=privileged)

    return _open

"""ICMP echo requests and the names of whatever comes back."""

from __future__ import annotations

from icmplib.models import ICMPReply, ICMPRequest
from icmplib.utils import PID

ICMPV4_ECHO_REPLY = 0
ICMPV6_ECHO_REPLY = 129

ECHO_SEQUENCE = 1
ECHO_PAYLOAD = b"ping message"

_MESSAGES_V6 = {
    1: "Destination Unreachable",
    2: "Packet Too Big",
    3: "Time Exceeded",
    4: "Parameter Problem",
    128: "Echo Request",
    129: "Echo Reply",
    130: "Multicast Listener Query",
    131: "Multicast Listener Report",
    132: "Multicast Listener Done",
    133: "Router Solicitation",
    134: "Router Advertisement",
    135: "Neighbor Solicitation",
    136: "Neighbor Advertisement",
    137: "Redirect Message",
    143: "Multicast Listener Report v2",
}

_MESSAGES_V4 = {
    0: "Echo Reply",
    3: "Destination Unreachable",
    4: "Source Quench (Deprecated)",
    5: "Redirect",
    8: "Echo",
    9: "Router Advertisement",
    10: "Router Selection",
    11: "Time Exceeded",
    12: "Parameter Problem",
    13: "Timestamp",
    14: "Timestamp Reply",
}


def echo_identifier() -> int:
    """Identifier stamped on every request: the low 16 bits of the PID."""
    return PID & 0xFFFF


def echo_request(address: str, identifier: int) -> ICMPRequest:
    """One echo request to ``address``; icmplib fills in type and checksum."""
    return ICMPRequest(
        destination=address,
        id=identifier,
        sequence=ECHO_SEQUENCE,
        payload=ECHO_PAYLOAD,
    )


def is_echo_reply(reply: ICMPReply, is_ipv4: bool) -> bool:
    if is_ipv4:
        return reply.type == ICMPV4_ECHO_REPLY
    return reply.type == ICMPV6_ECHO_REPLY


def describe(reply: ICMPReply, is_ipv4: bool) -> str:
    table = _MESSAGES_V4 if is_ipv4 else _MESSAGES_V6
    return table.get(reply.type, "Unassigned")

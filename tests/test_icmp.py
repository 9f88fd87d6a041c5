"""Tests for echo request building and reply classification."""

from __future__ import annotations

import asyncio

import pytest
from icmplib.models import ICMPRequest

from tests.fakes import echo_reply
from vigil.health.icmp import (
    ECHO_PAYLOAD,
    ECHO_SEQUENCE,
    describe,
    echo_identifier,
    echo_request,
    is_echo_reply,
)
from vigil.health.sockets import IcmpSocket, socket_factory


# ── Requests ─────────────────────────────────────────────────────────────────


class TestEchoRequest:
    def test_fields(self) -> None:
        request = echo_request("10.0.0.5", 0x1234)
        assert isinstance(request, ICMPRequest)
        assert request.destination == "10.0.0.5"
        assert (request.id, request.sequence) == (0x1234, ECHO_SEQUENCE)
        assert request.payload == ECHO_PAYLOAD

    def test_zone_kept_in_destination(self) -> None:
        assert echo_request("fe80::1%eth0", 1).destination == "fe80::1%eth0"

    def test_identifier_truncated_to_16_bits(self) -> None:
        assert echo_request("10.0.0.5", 0x12345).id == 0x2345

    def test_echo_identifier_fits(self) -> None:
        assert 0 <= echo_identifier() <= 0xFFFF


# ── Replies ──────────────────────────────────────────────────────────────────


class TestReplies:
    def test_echo_reply_per_family(self) -> None:
        assert is_echo_reply(echo_reply(True, "10.0.0.5", 42), True)
        assert is_echo_reply(echo_reply(False, "2001:db8::1", 42), False)

    def test_v4_reply_type_is_not_v6_reply(self) -> None:
        assert not is_echo_reply(echo_reply(False, "2001:db8::1", 1, msg_type=0), False)

    @pytest.mark.parametrize(
        "is_ipv4, msg_type, name",
        [
            (True, 0, "Echo Reply"),
            (True, 3, "Destination Unreachable"),
            (True, 11, "Time Exceeded"),
            (False, 2, "Packet Too Big"),
            (False, 135, "Neighbor Solicitation"),
            (False, 200, "Unassigned"),
        ],
    )
    def test_described(self, is_ipv4: bool, msg_type: int, name: str) -> None:
        reply = echo_reply(is_ipv4, "10.0.0.5", 1, msg_type=msg_type)
        assert describe(reply, is_ipv4) == name


# ── Sockets ──────────────────────────────────────────────────────────────────


class TestSocketFactory:
    def test_opens_family_socket_in_mode(self, monkeypatch: pytest.MonkeyPatch) -> None:
        opened: list[tuple[str, bool]] = []

        class Recorder:
            def __init__(self, address=None, privileged=True) -> None:
                opened.append((type(self).__name__, privileged))
                self.is_closed = False

            def close(self) -> None:
                self.is_closed = True

        class ICMPv4Socket(Recorder):
            pass

        class ICMPv6Socket(Recorder):
            pass

        monkeypatch.setattr("vigil.health.sockets.ICMPv4Socket", ICMPv4Socket)
        monkeypatch.setattr("vigil.health.sockets.ICMPv6Socket", ICMPv6Socket)

        v4 = socket_factory(privileged=True)(True)
        v6 = socket_factory()(False)

        assert isinstance(v4, IcmpSocket)
        assert opened == [("ICMPv4Socket", True), ("ICMPv6Socket", False)]
        assert v4.filters_identifier and not v6.filters_identifier
        assert repr(v6) == "<IcmpSocket ipv6 dgram open>"
        v6.close()
        assert repr(v6) == "<IcmpSocket ipv6 dgram closed>"

    def test_delegates_to_icmplib(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[tuple] = []
        reply = echo_reply(True, "10.0.0.5", 7)

        class ICMPv4Socket:
            def __init__(self, address=None, privileged=True) -> None:
                self.is_closed = False

            def send(self, request) -> None:
                calls.append(("send", request.destination))

            def receive(self, request=None, timeout=2):
                calls.append(("receive", request, timeout))
                return reply

        monkeypatch.setattr("vigil.health.sockets.ICMPv4Socket", ICMPv4Socket)
        sock = IcmpSocket(True)

        async def scenario():
            await sock.send(echo_request("10.0.0.5", 7))
            return await sock.receive(0.25)

        assert asyncio.run(scenario()) is reply
        assert calls == [("send", "10.0.0.5"), ("receive", None, 0.25)]

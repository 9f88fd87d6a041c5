"""Failure events emitted by the probers.

A closed set of frozen dataclasses. Presentation lives in
``vigil.notifications.templates``; nothing here knows how an event is shown.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class EventKind(str, Enum):
    HOST_UNREACHABLE = "host_unreachable"
    PROCESS_MISSING = "process_missing"
    REMOTE_SESSION_ERROR = "remote_session_error"


@dataclass(frozen=True)
class HostUnreachable:
    target_name: str
    address: str
    cause: str

    kind = EventKind.HOST_UNREACHABLE


@dataclass(frozen=True)
class ProcessMissing:
    program_name: str
    process_pattern: str
    server_address: str
    log_output: str = ""

    kind = EventKind.PROCESS_MISSING


@dataclass(frozen=True)
class RemoteSessionError:
    server_address: str
    program_name: str
    process_pattern: str
    cause: str

    kind = EventKind.REMOTE_SESSION_ERROR


FailureEvent = Union[HostUnreachable, ProcessMissing, RemoteSessionError]

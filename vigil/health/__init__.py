"""Probe engine: ICMP and remote-process probers, failure events, scheduler."""

from .events import EventKind, FailureEvent, HostUnreachable, ProcessMissing, RemoteSessionError
from .ping import ListenerError, PingError, PingProber, PingSendError, PingTimeout
from .process import ProcessProber
from .scheduler import ProbeScheduler

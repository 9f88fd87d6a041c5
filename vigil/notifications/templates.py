"""Human-readable reports for failure events. Pure functions, no state."""

from __future__ import annotations

from dataclasses import asdict

from vigil.health.events import EventKind, FailureEvent

_FAILED_HOST = """
Host "{target_name}" with address {address} has failed to respond to a ping.

Error:
{cause}
"""

_FAILED_PROGRAM = """
Program "{program_name}" (process {process_pattern}) has failed on host {server_address}. We could not detect
any PID using "pgrep {process_pattern}".

{log_section}
"""

_FAILED_SSH = """
Could not log into host {server_address} to verify whether program {program_name} ({process_pattern}) is running.

Error:
{cause}
"""

_TEMPLATES = {
    EventKind.HOST_UNREACHABLE: _FAILED_HOST,
    EventKind.PROCESS_MISSING: _FAILED_PROGRAM,
    EventKind.REMOTE_SESSION_ERROR: _FAILED_SSH,
}

_SUBJECTS = {
    EventKind.HOST_UNREACHABLE: "Host {target_name} unreachable",
    EventKind.PROCESS_MISSING: "{program_name} not running on {server_address}",
    EventKind.REMOTE_SESSION_ERROR: "Cannot reach {server_address} over SSH",
}


def render(event: FailureEvent) -> str:
    """Render the report body for ``event``."""
    fields = asdict(event)
    if event.kind is EventKind.PROCESS_MISSING:
        if event.log_output:
            fields["log_section"] = f"Last lines of the program log:\n{event.log_output}"
        else:
            fields["log_section"] = f"Configuration for {event.program_name} did not specify a log to read from."
    return _TEMPLATES[event.kind].format(**fields)


def subject(event: FailureEvent) -> str:
    """One-line summary, used for chat messages and mail subjects."""
    return _SUBJECTS[event.kind].format(**asdict(event))

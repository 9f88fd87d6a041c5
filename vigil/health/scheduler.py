"""Probe scheduler: one sweep now, then one at the start of every interval.

A sweep drains the ping prober, then each process prober in registration
order, forwarding every event to the notifier as it arrives. Nothing inside
a sweep runs in parallel.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import AsyncIterator, Sequence
from datetime import timedelta
from typing import TYPE_CHECKING, Protocol

from vigil.health.events import FailureEvent
from vigil.health.ping import DEFAULT_TIMEOUT, PingProber
from vigil.health.process import DEFAULT_COMMAND, ProcessProber
from vigil.health.remote import SessionFactory
from vigil.health.sockets import SocketFactory
from vigil.targets.registry import ConfigError, TargetRegistry, parse_duration

if TYPE_CHECKING:
    from vigil.notifications import Notifier

logger = logging.getLogger(__name__)


class Prober(Protocol):
    def run(self) -> AsyncIterator[FailureEvent]: ...


def _interval_seconds(interval: timedelta | float | str) -> float:
    if isinstance(interval, str):
        interval = parse_duration(interval)
    seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
    if seconds <= 0:
        raise ConfigError(f"Sweep interval must be positive, got {interval!r}")
    return seconds


class ProbeScheduler:
    """Runs every prober once per tick and hands failures to the notifier.

    Lifecycle:
        scheduler = ProbeScheduler.from_registry(registry, notifier, "5m")
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        notifier: Notifier,
        interval: timedelta | float | str,
        ping_prober: PingProber | None = None,
        process_probers: Sequence[Prober] = (),
        log: logging.Logger | None = None,
    ) -> None:
        self.notifier = notifier
        self.interval = _interval_seconds(interval)
        self.ping_prober = ping_prober
        self.process_probers = list(process_probers)
        self._log = log or logger
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self.sweeps = 0

    @classmethod
    def from_registry(
        cls,
        registry: TargetRegistry,
        notifier: Notifier,
        interval: timedelta | float | str,
        timeout: float = DEFAULT_TIMEOUT,
        privileged: bool = False,
        socket_factory: SocketFactory | None = None,
        session_factory: SessionFactory | None = None,
        log_lines: int = 20,
        command_template: str = DEFAULT_COMMAND,
        log: logging.Logger | None = None,
    ) -> ProbeScheduler:
        """Build probers for everything in ``registry``. Raises ``ConfigError``."""
        ping_prober = None
        if registry.ping_targets:
            ping_prober = PingProber(
                registry.ping_targets,
                timeout=timeout,
                factory=socket_factory,
                privileged=privileged,
                log=log,
            )
        process_probers = [
            ProcessProber(
                server,
                session_factory=session_factory,
                command_template=command_template,
                log_lines=log_lines,
                log=log,
            )
            for server in registry.servers
        ]
        return cls(
            notifier,
            interval,
            ping_prober=ping_prober,
            process_probers=process_probers,
            log=log,
        )

    def probers(self) -> list[Prober]:
        probers: list[Prober] = []
        if self.ping_prober is not None and self.ping_prober.targets:
            probers.append(self.ping_prober)
        probers.extend(self.process_probers)
        return probers

    # -- Sweeps -------------------------------------------------------------

    async def run_sweep(self) -> list[FailureEvent]:
        """Run every prober to completion once; return the events forwarded."""
        events: list[FailureEvent] = []
        for prober in self.probers():
            try:
                async for event in prober.run():
                    events.append(event)
                    await self._forward(event)
            except Exception:
                self._log.exception("Prober %s failed mid-sweep", type(prober).__name__)
        self.sweeps += 1
        return events

    async def _forward(self, event: FailureEvent) -> None:
        self._log.error("%s", event)
        try:
            delivered = await self.notifier.deliver(event)
        except Exception:
            self._log.exception("Notifier raised while delivering %s", event.kind.value)
            return
        if not delivered:
            self._log.warning("Could not deliver %s notification", event.kind.value)

    async def run_forever(self, max_sweeps: int | None = None) -> None:
        """Sweep immediately, then at every interval boundary.

        Ticks that pass while a sweep is still running are skipped rather
        than queued.
        """
        loop = asyncio.get_running_loop()
        if self.ping_prober is not None:
            await self.ping_prober.start()
        try:
            started = loop.time()
            done = 0
            while True:
                self._log.info("-----Starting sweep %d-----", self.sweeps + 1)
                events = await self.run_sweep()
                self._log.info("-----Finished! %d failures-----", len(events))
                done += 1
                if max_sweeps is not None and done >= max_sweeps:
                    return

                now = loop.time()
                ticks = math.floor((now - started) / self.interval) + 1
                await asyncio.sleep(started + ticks * self.interval - now)
        finally:
            if self.ping_prober is not None:
                await self.ping_prober.stop()

    async def start(self) -> None:
        """Start the sweep loop in the background."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self.run_forever(), name="probe-scheduler")
        self._log.info(
            "Probe scheduler started: every %.0fs, %d probers",
            self.interval,
            len(self.probers()),
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._log.info("Probe scheduler stopped")

# app/realtime/heartbeat.py
"""
Liveness monitor for relay connections.

Two-phase check per cycle:
- flag already cleared (no inbound frame since the last probe) -> terminate
- otherwise clear the flag and send a fresh `ping` probe

A silent peer is therefore dropped within two intervals.
"""
import asyncio
from typing import Optional

from app.core.logging import log
from app.realtime.messages import Ping, now_ms
from app.realtime.relay import RelayServer


class LivenessMonitor:
    """Periodically probes every socket the relay tracks."""

    def __init__(self, relay: RelayServer, interval: float = 30.0) -> None:
        self.relay = relay
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        log("HEARTBEAT", f"Liveness monitor started (every {self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception as e:
                log("REALTIME", f"Liveness sweep failed: {e}")

    async def sweep(self) -> int:
        """Run one probe cycle. Returns how many connections were terminated."""
        pruned = 0

        for connection in self.relay.connections():
            if not connection.is_alive:
                log("REALTIME", f"No traffic from {connection!r} since last probe, terminating", user_id=connection.user_id)
                await self.relay.terminate(connection)
                pruned += 1
                continue

            connection.is_alive = False
            try:
                await connection.send(Ping(timestamp=now_ms()))
            except Exception as e:
                log("HEARTBEAT", f"Probe failed on {connection!r}: {e}", user_id=connection.user_id)
                await self.relay.terminate(connection)
                pruned += 1

        if pruned:
            if self.relay.metrics is not None:
                self.relay.metrics.record_pruned(pruned)
            log("HEARTBEAT", f"Pruned {pruned} connection(s), {self.relay.count_sockets()} open")

        return pruned

# tests/test_heartbeat.py
"""
Liveness monitor: probe, prune, and the start/stop lifecycle.
"""
import asyncio

import pytest
from prometheus_client import CollectorRegistry

from app.lib.monitoring import RelayMetrics
from app.lib.websocket import ConnectionState
from app.realtime import LivenessMonitor, RelayServer


async def _authenticated(relay, make_socket, token="token-u1"):
    connection = relay.open(make_socket())
    await relay.admit(connection, token)
    return connection


class TestSweep:

    @pytest.mark.asyncio
    async def test_first_cycle_probes_and_clears_flag(self, relay, monitor, make_socket):
        connection = await _authenticated(relay, make_socket)

        assert await monitor.sweep() == 0

        assert connection.is_alive is False
        probe = connection.websocket.messages()[-1]
        assert probe["type"] == "ping"
        assert isinstance(probe["timestamp"], int)

    @pytest.mark.asyncio
    async def test_silent_connection_pruned_after_two_cycles(self, relay, monitor, make_socket):
        silent = await _authenticated(relay, make_socket)
        await _authenticated(relay, make_socket, token="token-u2")
        total_before = relay.count_total()

        await monitor.sweep()
        # Only U2 answers
        for connection in relay.connections():
            if connection is not silent:
                await relay.dispatch(connection, '{"type": "pong"}')
        pruned = await monitor.sweep()

        assert pruned == 1
        assert relay.count_total() == total_before - 1
        assert relay.count_for("U1") == 0
        assert silent.state == ConnectionState.CLOSED
        assert silent.websocket.close_code == 1001

    @pytest.mark.asyncio
    async def test_responsive_connection_never_pruned(self, relay, monitor, make_socket):
        connection = await _authenticated(relay, make_socket)

        for _ in range(5):
            await monitor.sweep()
            await relay.dispatch(connection, '{"type": "pong"}')

        assert relay.count_for("U1") == 1
        assert connection.websocket.types().count("ping") == 5

    @pytest.mark.asyncio
    async def test_client_sending_only_pings_survives(self, relay, monitor, make_socket):
        connection = await _authenticated(relay, make_socket)

        for _ in range(3):
            await monitor.sweep()
            await relay.dispatch(connection, '{"type": "ping"}')

        assert await monitor.sweep() == 0
        assert relay.count_for("U1") == 1
        assert connection.state == ConnectionState.AUTHENTICATED

    @pytest.mark.asyncio
    async def test_unauthenticated_sockets_are_probed_too(self, relay, monitor, make_socket):
        anonymous = relay.open(make_socket())

        await monitor.sweep()
        await monitor.sweep()

        assert relay.count_sockets() == 0
        assert anonymous.websocket.close_code == 1001

    @pytest.mark.asyncio
    async def test_probe_send_failure_terminates_immediately(self, relay, monitor, make_socket):
        connection = relay.open(make_socket(fail_send=True))

        assert await monitor.sweep() == 1
        assert connection.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_pruned_counter(self, registry, resolver, make_socket):
        metrics = RelayMetrics(CollectorRegistry())
        relay = RelayServer(registry, resolver, metrics=metrics)
        monitor = LivenessMonitor(relay, interval=1)
        await _authenticated(relay, make_socket)
        assert metrics.registry.get_sample_value("capycode_realtime_connections") == 1

        await monitor.sweep()
        await monitor.sweep()

        assert metrics.registry.get_sample_value("capycode_realtime_pruned_total") == 1
        assert metrics.registry.get_sample_value("capycode_realtime_connections") == 0
        assert metrics.registry.get_sample_value("capycode_realtime_sockets") == 0


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_background_loop_prunes_silent_peer(self, relay, monitor, make_socket):
        await _authenticated(relay, make_socket)

        monitor.start()
        try:
            for _ in range(100):
                if relay.count_total() == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            await monitor.stop()

        assert relay.count_total() == 0
        assert not monitor.running

    @pytest.mark.asyncio
    async def test_start_is_idempotent_and_stop_is_safe(self, monitor):
        await monitor.stop()

        monitor.start()
        first = monitor._task
        monitor.start()
        assert monitor._task is first

        await monitor.stop()
        assert not monitor.running

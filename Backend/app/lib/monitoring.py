from fastapi import FastAPI
from prometheus_client.registry import CollectorRegistry as Registry
from prometheus_client import Counter, Gauge
from prometheus_fastapi_instrumentator import Instrumentator
from app.core.logging import log


class RelayMetrics:
    """Realtime relay gauges, bound to one app's registry."""

    def __init__(self, registry: Registry) -> None:
        self.registry = registry
        self.connections = Gauge(
            'capycode_realtime_connections',
            'Authenticated realtime connections held in the registry',
            registry=registry,
        )
        self.sockets = Gauge(
            'capycode_realtime_sockets',
            'Open realtime sockets, authenticated or not',
            registry=registry,
        )
        self.pruned = Counter(
            'capycode_realtime_pruned',
            'Connections terminated by the liveness monitor',
            registry=registry,
        )

    def set_connections(self, registered: int, sockets: int) -> None:
        self.connections.set(registered)
        self.sockets.set(sockets)

    def record_pruned(self, n: int = 1) -> None:
        self.pruned.inc(n)


def register_monitoring(app: FastAPI) -> RelayMetrics:
    """
    Registers Prometheus monitoring on the FastAPI app and returns the relay gauges.

    Each app gets its own registry so several apps can live in one process (tests).
    """
    registry = Registry()

    instrumentator = Instrumentator(
        excluded_handlers=["/metrics"],  # Don't monitor the metrics endpoint itself
        registry=registry,
    ).instrument(app)

    # This exposes the /metrics endpoint
    instrumentator.expose(app, include_in_schema=False, should_gzip=True)

    log("MONITORING", "Prometheus instrumentation registered at /metrics.")
    return RelayMetrics(registry)

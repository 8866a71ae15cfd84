"""
Realtime notification relay - wire messages, relay server, liveness monitor.
"""
from .relay import RelayServer
from .heartbeat import LivenessMonitor

__all__ = ["RelayServer", "LivenessMonitor"]

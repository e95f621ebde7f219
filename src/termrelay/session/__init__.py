"""
Session management: the live-session registry and connection heartbeats.
"""

from termrelay.session.heartbeat import ConnectionHeartbeat
from termrelay.session.registry import ActiveSession, SessionRegistry, status_for_reason

__all__ = ["ActiveSession", "ConnectionHeartbeat", "SessionRegistry", "status_for_reason"]

"""NATS messaging for autopilot."""

from autopilot.messaging.client import NatsConnection
from autopilot.messaging.streams import ensure_streams
from autopilot.messaging.subjects import Subjects

__all__ = ["NatsConnection", "Subjects", "ensure_streams"]

"""JetStream stream configuration for autopilot."""

from __future__ import annotations

import logging

from nats.js import JetStreamContext
from nats.js.api import RetentionPolicy, StreamConfig

logger = logging.getLogger(__name__)

# Completion events are durable so outcomes reported while autopilot was
# restarting are still delivered to the goal engine.
SESSIONS_STREAM = "AUTOPILOT_SESSIONS"
SESSIONS_SUBJECTS = ["autopilot.session.*.complete"]
SESSIONS_MAX_AGE = 3 * 24 * 60 * 60  # 3 days in seconds


async def ensure_streams(js: JetStreamContext) -> None:
    """Create or update the SESSIONS stream."""
    config = StreamConfig(
        name=SESSIONS_STREAM,
        subjects=SESSIONS_SUBJECTS,
        retention=RetentionPolicy.LIMITS,
        max_age=SESSIONS_MAX_AGE,
    )
    try:
        await js.find_stream_name_by_subject(SESSIONS_SUBJECTS[0])
        await js.update_stream(config)
        logger.info("Updated JetStream stream: %s", SESSIONS_STREAM)
    except Exception:
        await js.add_stream(config)
        logger.info("Created JetStream stream: %s", SESSIONS_STREAM)

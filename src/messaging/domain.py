"""Messaging bounded context — multi-channel delivery and automated journeys.

Sends messages to users over push, email, WhatsApp, SMS and the in-app inbox
while honouring per-channel consent, quiet hours and frequency limits, and
drives multi-step journeys (onboarding, win-back, reminders) whose steps emit
messages back into the same delivery pipeline.
"""

from messaging.utils.logging import configure_logging, get_logger
from protean.domain import Domain

configure_logging()

logger = get_logger(__name__)

messaging = Domain(name="messaging")

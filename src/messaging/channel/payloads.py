"""Channel-specific payloads built from a rendered message.

Each channel gets its own payload shape; ``build_payload`` is the single
place that maps a message onto one of them.
"""

from dataclasses import dataclass, field

from messaging.message.message import Channel


@dataclass(frozen=True)
class PushPayload:
    user_id: str
    title: str
    body: str
    deep_link: str | None = None
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class EmailPayload:
    user_id: str
    subject: str
    body: str
    cta_label: str | None = None
    cta_url: str | None = None


@dataclass(frozen=True)
class SmsPayload:
    user_id: str
    text: str


@dataclass(frozen=True)
class WhatsAppPayload:
    user_id: str
    text: str
    template_id: str
    variables: dict = field(default_factory=dict)


@dataclass(frozen=True)
class InboxPayload:
    user_id: str
    title: str
    body: str
    cta_label: str | None = None
    cta_url: str | None = None


def build_payload(message):
    """Return the payload for ``message.channel``."""
    user_id = str(message.user_id)
    channel = Channel(message.channel)

    if channel == Channel.PUSH:
        return PushPayload(
            user_id=user_id,
            title=message.subject or "",
            body=message.body,
            deep_link=message.cta_url,
            data={"message_id": str(message.id), "template_id": message.template_id},
        )
    elif channel == Channel.EMAIL:
        return EmailPayload(
            user_id=user_id,
            subject=message.subject or "",
            body=message.body,
            cta_label=message.cta_label,
            cta_url=message.cta_url,
        )
    elif channel == Channel.SMS:
        text = message.body if not message.cta_url else f"{message.body} {message.cta_url}"
        return SmsPayload(user_id=user_id, text=text)
    elif channel == Channel.WHATSAPP:
        return WhatsAppPayload(
            user_id=user_id,
            text=message.body,
            template_id=message.template_id,
            variables=message.variables_dict(),
        )
    elif channel == Channel.INAPP:
        return InboxPayload(
            user_id=user_id,
            title=message.subject or "",
            body=message.body,
            cta_label=message.cta_label,
            cta_url=message.cta_url,
        )
    raise ValueError(f"Unknown channel: {message.channel}")

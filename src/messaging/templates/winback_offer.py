"""Win-back offer for lapsed customers, with an A/B test on the push copy."""

from messaging.templates.template import (
    ChannelContent,
    MessageTemplate,
    TemplateVariable,
    TemplateVariant,
)

WINBACK_OFFER = MessageTemplate(
    id="WINBACK_OFFER",
    category="engagement",
    purpose="marketing",
    channels=["push", "email", "whatsapp"],
    content={
        "push": ChannelContent(
            subject="We miss you, {{ first_name }}",
            body="Here is {{ discount }}% off your next order. Code {{ code }}.",
        ),
        "email": ChannelContent(
            subject="{{ discount }}% off, just for you",
            body="Hi {{ first_name }}, it has been a while. Use {{ code }} for {{ discount }}% off.",
            cta_label="Shop now",
            cta_url="https://app.example.com/shop?code={{ code }}",
        ),
        "whatsapp": ChannelContent(body="Hi {{ first_name }}! Use {{ code }} for {{ discount }}% off."),
    },
    variables=[
        TemplateVariable(name="first_name", default="there"),
        TemplateVariable(name="discount", type="number", required=True, min=5, max=50),
        TemplateVariable(name="code", required=True, pattern=r"[A-Z0-9]{4,12}"),
    ],
    variants=[
        TemplateVariant(name="control", weight=50),
        TemplateVariant(
            name="urgency",
            weight=50,
            content={
                "push": ChannelContent(
                    subject="Last chance, {{ first_name }}",
                    body="{{ discount }}% off ends soon. Code {{ code }}.",
                )
            },
        ),
    ],
    default_priority="low",
)

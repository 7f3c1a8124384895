"""Onboarding tip delivered in the app inbox or as a push."""

from messaging.templates.template import ChannelContent, MessageTemplate, TemplateVariable

ONBOARDING_TIP = MessageTemplate(
    id="ONBOARDING_TIP",
    category="onboarding",
    purpose="caring",
    channels=["inapp", "push"],
    content={
        "inapp": ChannelContent(subject="Tip #{{ tip_number }}", body="{{ tip }}"),
        "push": ChannelContent(subject="Tip #{{ tip_number }}", body="{{ tip }}"),
    },
    variables=[
        TemplateVariable(name="tip_number", type="number", default=1, min=1),
        TemplateVariable(name="tip", required=True, max=500),
    ],
    default_priority="low",
)

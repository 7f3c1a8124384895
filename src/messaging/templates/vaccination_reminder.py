"""Vaccination reminder for a dog's upcoming shot."""

from messaging.templates.template import ChannelContent, MessageTemplate, TemplateVariable

VACCINATION_REMINDER = MessageTemplate(
    id="VACCINATION_REMINDER",
    category="health",
    purpose="reminders",
    channels=["push", "whatsapp", "sms", "email"],
    content={
        "push": ChannelContent(
            subject="{{ dog_name }}'s {{ vaccine }} is due",
            body="{{ dog_name }} is due for {{ vaccine }} on {{ due_date }}.",
            cta_url="app://vets",
        ),
        "whatsapp": ChannelContent(body="Reminder: {{ dog_name }} is due for {{ vaccine }} on {{ due_date }}."),
        "sms": ChannelContent(body="{{ dog_name }}: {{ vaccine }} due {{ due_date }}."),
        "email": ChannelContent(
            subject="Vaccination reminder for {{ dog_name }}",
            body="{{ dog_name }} is due for {{ vaccine }} on {{ due_date }}. Book a vet visit today.",
            cta_label="Find a vet",
            cta_url="https://app.example.com/vets",
        ),
    },
    variables=[
        TemplateVariable(name="dog_name", required=True, min=1, max=50),
        TemplateVariable(name="vaccine", required=True),
        TemplateVariable(name="due_date", type="date", required=True),
    ],
    default_priority="high",
    fallback_channel="email",
)

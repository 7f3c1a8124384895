"""Welcome message — sent when a user signs up."""

from messaging.templates.template import ChannelContent, MessageTemplate, TemplateVariable

WELCOME = MessageTemplate(
    id="WELCOME",
    category="onboarding",
    purpose="marketing",
    channels=["push", "email"],
    content={
        "push": ChannelContent(
            subject="Welcome, {{ first_name }}!",
            body="Say hi to your new companion app. Let's set up {{ dog_name }}'s profile.",
            cta_url="app://onboarding",
        ),
        "email": ChannelContent(
            subject="Welcome to the pack, {{ first_name }}",
            body=(
                "Hi {{ first_name }},\n\n"
                "Thanks for joining. Add {{ dog_name }}'s details to get tailored care tips, "
                "reminders and offers.\n"
            ),
            cta_label="Complete profile",
            cta_url="https://app.example.com/onboarding",
        ),
    },
    variables=[
        TemplateVariable(name="first_name", default="there", max=50),
        TemplateVariable(name="dog_name", default="your dog", max=50),
    ],
)

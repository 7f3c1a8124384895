"""Order delivered message."""

from messaging.templates.template import ChannelContent, MessageTemplate, TemplateVariable

ORDER_DELIVERED = MessageTemplate(
    id="ORDER_DELIVERED",
    category="transactional",
    purpose="transactional",
    channels=["push", "email", "inapp"],
    content={
        "push": ChannelContent(subject="Delivered!", body="Order {{ order_number }} was delivered."),
        "email": ChannelContent(
            subject="Order {{ order_number }} was delivered",
            body="Your order {{ order_number }} arrived. We hope {{ dog_name }} loves it!",
            cta_label="Leave a review",
            cta_url="https://app.example.com/orders/{{ order_number }}/review",
        ),
        "inapp": ChannelContent(subject="Delivered", body="Order {{ order_number }} was delivered."),
    },
    variables=[
        TemplateVariable(name="order_number", required=True, pattern=r"[A-Z0-9-]{4,32}"),
        TemplateVariable(name="dog_name", default="your dog"),
    ],
    default_priority="high",
    fallback_channel="email",
)

"""Order shipped message — transactional update with a tracking link."""

from messaging.templates.template import ChannelContent, MessageTemplate, TemplateVariable

ORDER_SHIPPED = MessageTemplate(
    id="ORDER_SHIPPED",
    category="transactional",
    purpose="transactional",
    channels=["push", "email", "sms"],
    content={
        "push": ChannelContent(
            subject="Your order is on its way",
            body="Order {{ order_number }} has shipped via {{ carrier }}.",
            cta_url="{{ tracking_url }}",
        ),
        "email": ChannelContent(
            subject="Order {{ order_number }} has shipped",
            body="Good news! Order {{ order_number }} is on its way with {{ carrier }}.",
            cta_label="Track package",
            cta_url="{{ tracking_url }}",
        ),
        "sms": ChannelContent(body="Order {{ order_number }} shipped via {{ carrier }}."),
    },
    variables=[
        TemplateVariable(name="order_number", required=True, pattern=r"[A-Z0-9-]{4,32}"),
        TemplateVariable(name="carrier", default="our courier"),
        TemplateVariable(name="tracking_url", pattern=r"https?://\S+"),
    ],
    default_priority="high",
    fallback_channel="email",
)

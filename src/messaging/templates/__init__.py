"""Template registry — maps template ids to published templates.

Built-in templates are registered at import; others are published at runtime
through ``publish_template``, which validates them first.
"""

import pydantic
from messaging.errors import InvalidTemplate
from messaging.templates.onboarding_tip import ONBOARDING_TIP
from messaging.templates.order_delivered import ORDER_DELIVERED
from messaging.templates.order_shipped import ORDER_SHIPPED
from messaging.templates.template import MessageTemplate
from messaging.templates.vaccination_reminder import VACCINATION_REMINDER
from messaging.templates.welcome import WELCOME
from messaging.templates.winback_offer import WINBACK_OFFER

BUILTIN_TEMPLATES = (
    WELCOME,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    WINBACK_OFFER,
    VACCINATION_REMINDER,
    ONBOARDING_TIP,
)

TEMPLATE_REGISTRY: dict[str, MessageTemplate] = {template.id: template for template in BUILTIN_TEMPLATES}


def get_template(template_id: str) -> MessageTemplate:
    """Look up an active template by id."""
    template = TEMPLATE_REGISTRY.get(template_id)
    if template is None:
        raise InvalidTemplate(f"No template registered with id: {template_id}")
    if not template.active:
        raise InvalidTemplate(f"Template {template_id} is not active")
    return template


def publish_template(definition) -> MessageTemplate:
    """Validate and register a template, replacing any previous one with the same id."""
    if isinstance(definition, MessageTemplate):
        template = definition
    else:
        try:
            template = MessageTemplate.model_validate(definition)
        except pydantic.ValidationError as exc:
            raise InvalidTemplate(
                "Template failed validation",
                details={"errors": [error["msg"] for error in exc.errors()]},
            ) from None
    TEMPLATE_REGISTRY[template.id] = template
    return template


def reset_templates():
    """Restore the built-in registry (useful for testing)."""
    TEMPLATE_REGISTRY.clear()
    TEMPLATE_REGISTRY.update({template.id: template for template in BUILTIN_TEMPLATES})

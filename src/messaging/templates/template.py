"""Message template model — typed variables, per-channel content and A/B variants.

A template is validated when it is published: every ``{{ placeholder }}`` in
every piece of content must be a declared variable, each declared channel must
have content, and variant weights must add up to 100. At send time the
supplied variables are coerced and checked against the declared rules.
"""

import hashlib
import re
from datetime import date, datetime
from enum import Enum
from typing import Any

from messaging.errors import TemplateError
from messaging.message.message import Channel, Priority
from messaging.preference.preference import ConsentPurpose
from pydantic import BaseModel, ConfigDict, Field, model_validator

PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_]\w*)\s*\}\}")


class VariableType(Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"


class TemplateVariable(BaseModel):
    """A declared template variable with its validation rules.

    ``min`` / ``max`` bound the value of numbers and the length of strings.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(pattern=r"^[A-Za-z_]\w*$")
    type: VariableType = VariableType.STRING
    required: bool = False
    default: Any = None
    min: float | None = None
    max: float | None = None
    pattern: str | None = None
    choices: list[Any] | None = None

    @model_validator(mode="after")
    def _check_default(self):
        if self.default is not None:
            self.coerce(self.default)
        return self

    def coerce(self, value):
        """Return ``value`` converted to the declared type or raise ``ValueError``."""
        if self.type == VariableType.NUMBER:
            if isinstance(value, bool):
                raise ValueError(f"{self.name} must be a number")
            try:
                value = float(value) if not isinstance(value, int) else value
            except (TypeError, ValueError):
                raise ValueError(f"{self.name} must be a number") from None
            if isinstance(value, float) and value.is_integer():
                value = int(value)
            self._check_range(value, value)
        elif self.type == VariableType.BOOLEAN:
            if isinstance(value, str) and value.lower() in ("true", "false"):
                value = value.lower() == "true"
            if not isinstance(value, bool):
                raise ValueError(f"{self.name} must be a boolean")
        elif self.type == VariableType.DATE:
            if isinstance(value, datetime):
                value = value.date()
            elif isinstance(value, str):
                try:
                    value = datetime.fromisoformat(value).date()
                except ValueError:
                    raise ValueError(f"{self.name} must be an ISO date") from None
            if not isinstance(value, date):
                raise ValueError(f"{self.name} must be a date")
        else:
            value = str(value)
            self._check_range(value, len(value))
            if self.pattern and not re.fullmatch(self.pattern, value):
                raise ValueError(f"{self.name} does not match {self.pattern}")

        if self.choices is not None and value not in self.choices:
            raise ValueError(f"{self.name} must be one of {self.choices}")
        return value

    def _check_range(self, value, measure):
        if self.min is not None and measure < self.min:
            raise ValueError(f"{self.name} is below the minimum of {self.min:g}")
        if self.max is not None and measure > self.max:
            raise ValueError(f"{self.name} is above the maximum of {self.max:g}")


class ChannelContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    subject: str | None = None
    body: str
    cta_label: str | None = None
    cta_url: str | None = None

    def placeholders(self) -> set[str]:
        names = set()
        for text in (self.subject, self.body, self.cta_label, self.cta_url):
            if text:
                names.update(PLACEHOLDER.findall(text))
        return names

    def render(self, values: dict) -> dict:
        return {
            "subject": _substitute(self.subject, values),
            "body": _substitute(self.body, values),
            "cta_label": _substitute(self.cta_label, values),
            "cta_url": _substitute(self.cta_url, values),
        }


class TemplateVariant(BaseModel):
    """An A/B variant overriding the content of some channels."""

    model_config = ConfigDict(frozen=True)

    name: str
    weight: int = Field(ge=0, le=100)
    content: dict[Channel, ChannelContent] = Field(default_factory=dict)


class RenderedMessage(BaseModel):
    channel: Channel
    variant: str | None = None
    subject: str | None = None
    body: str
    cta_label: str | None = None
    cta_url: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)


class MessageTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    category: str
    purpose: ConsentPurpose
    requires_consent: bool = True
    channels: list[Channel]
    content: dict[Channel, ChannelContent]
    variables: list[TemplateVariable] = Field(default_factory=list)
    variants: list[TemplateVariant] = Field(default_factory=list)
    default_priority: Priority = Priority.MEDIUM
    fallback_channel: Channel | None = None
    active: bool = True

    @model_validator(mode="after")
    def _check_publishable(self):
        if not self.channels:
            raise ValueError("a template must declare at least one channel")

        missing = [c.value for c in self.channels if c not in self.content]
        if missing:
            raise ValueError(f"no content for channels: {', '.join(missing)}")

        declared = {variable.name for variable in self.variables}
        if len(declared) != len(self.variables):
            raise ValueError("variable names must be unique")

        contents = list(self.content.values())
        for variant in self.variants:
            extra = [c.value for c in variant.content if c not in self.channels]
            if extra:
                raise ValueError(f"variant {variant.name} targets undeclared channels: {', '.join(extra)}")
            contents.extend(variant.content.values())

        used = set().union(*(content.placeholders() for content in contents))
        unknown = sorted(used - declared)
        if unknown:
            raise ValueError(f"undeclared variables: {', '.join(unknown)}")

        if self.variants and sum(variant.weight for variant in self.variants) != 100:
            raise ValueError("variant weights must sum to 100")
        return self

    # -------------------------------------------------------------------
    # Send-time behavior
    # -------------------------------------------------------------------
    def resolve_variables(self, supplied: dict | None) -> dict:
        """Coerce supplied values, apply defaults and enforce required variables.

        Undeclared keys are ignored.
        """
        supplied = supplied or {}
        values, errors = {}, {}
        for variable in self.variables:
            raw = supplied.get(variable.name)
            if raw is None:
                raw = variable.default
            if raw is None:
                if variable.required:
                    errors[variable.name] = ["is required"]
                continue
            try:
                values[variable.name] = variable.coerce(raw)
            except ValueError as exc:
                errors[variable.name] = [str(exc)]

        if errors:
            raise TemplateError(f"Invalid variables for template {self.id}", details=errors)
        return values

    def select_variant(self, user_id) -> TemplateVariant | None:
        """Pick a variant deterministically for a (template, user) pair."""
        if not self.variants:
            return None
        digest = hashlib.sha256(f"{self.id}:{user_id}".encode()).hexdigest()
        bucket = int(digest[:8], 16) % 100
        cumulative = 0
        for variant in self.variants:
            cumulative += variant.weight
            if bucket < cumulative:
                return variant
        return self.variants[-1]

    def render(self, channel, variables: dict | None, user_id=None, ab_testing: bool = True) -> RenderedMessage:
        channel = Channel(channel)
        if channel not in self.content:
            raise TemplateError(f"Template {self.id} has no content for {channel.value}")

        values = self.resolve_variables(variables)
        variant = self.select_variant(user_id) if ab_testing else None
        content = self.content[channel]
        if variant is not None and channel in variant.content:
            content = variant.content[channel]

        return RenderedMessage(
            channel=channel,
            variant=variant.name if variant else None,
            variables=values,
            **content.render(values),
        )


def _format(value) -> str:
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _substitute(text, values: dict):
    if text is None:
        return None
    return PLACEHOLDER.sub(lambda match: _format(values[match.group(1)]) if match.group(1) in values else "", text)

"""Journey definitions — triggers, steps, conditions and actions as data.

Steps form an explicit directed graph: each step names the step that follows
it (``next``), conditions may jump to a named branch (``branches`` maps a
branch name to its entry step), and the journey completes when a step has no
successor. When ``next`` is omitted the following step in the list is used,
unless the step is marked ``end``.
"""

from datetime import timedelta
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from messaging.errors import ConditionEvaluationError
from messaging.message.message import Channel, Priority
from pydantic import BaseModel, ConfigDict, Field, model_validator

_MISSING = object()


class ConditionOperator(Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class ConditionEffect(Enum):
    EXIT = "exit"
    BRANCH = "branch"
    SKIP = "skip"


class ActionType(Enum):
    SEND_MESSAGE = "send_message"
    UPDATE_PROPERTY = "update_property"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    WEBHOOK = "webhook"


class TriggerType(Enum):
    EVENT = "event"
    DATE_OFFSET = "date_offset"
    INACTIVITY = "inactivity"
    MANUAL = "manual"


def lookup(context: dict, path: str):
    """Resolve a dotted path (``profile.orders_count``) inside nested dicts."""
    value = context
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _number(value, path):
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConditionEvaluationError(f"{path} is not a number: {value!r}")
    return value


class Condition(BaseModel):
    """A boolean rule evaluated against a context dict."""

    model_config = ConfigDict(frozen=True)

    field: str
    operator: ConditionOperator
    value: Any = None

    def evaluate(self, context: dict) -> bool:
        actual = lookup(context, self.field)
        op = self.operator

        if op == ConditionOperator.EXISTS:
            return actual is not _MISSING and actual is not None
        if op == ConditionOperator.NOT_EXISTS:
            return actual is _MISSING or actual is None

        missing = actual is _MISSING or actual is None
        if op == ConditionOperator.EQUALS:
            return not missing and actual == self.value
        if op == ConditionOperator.NOT_EQUALS:
            return missing or actual != self.value

        if op in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
            if missing:
                return False
            left, right = _number(actual, self.field), _number(self.value, self.field)
            return left > right if op == ConditionOperator.GREATER_THAN else left < right

        if op in (ConditionOperator.IN, ConditionOperator.NOT_IN):
            if not isinstance(self.value, list | tuple | set):
                raise ConditionEvaluationError(f"{op.value} needs a list value for {self.field}")
            found = not missing and actual in self.value
            return found if op == ConditionOperator.IN else not found

        # CONTAINS / NOT_CONTAINS
        if missing:
            found = False
        elif isinstance(actual, list | tuple | set | dict | str):
            found = self.value in actual
        else:
            raise ConditionEvaluationError(f"{self.field} is not a collection: {actual!r}")
        return found if op == ConditionOperator.CONTAINS else not found


class StepCondition(Condition):
    """A condition with the effect it has on the step when it matches."""

    effect: ConditionEffect = ConditionEffect.EXIT
    branch: str | None = None

    @model_validator(mode="after")
    def _branch_named(self):
        if self.effect == ConditionEffect.BRANCH and not self.branch:
            raise ValueError("a branch condition must name its branch")
        return self


class Delay(BaseModel):
    model_config = ConfigDict(frozen=True)

    days: int = Field(default=0, ge=0)
    hours: int = Field(default=0, ge=0)
    minutes: int = Field(default=0, ge=0)

    def as_timedelta(self) -> timedelta:
        return timedelta(days=self.days, hours=self.hours, minutes=self.minutes)


class StepAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ActionType
    # send_message
    template_id: str | None = None
    channel: Channel | None = None
    fallback_channel: Channel | None = None
    priority: Priority | None = None
    variables: dict[str, Any] = Field(default_factory=dict)
    # update_property
    property: str | None = None
    value: Any = None
    # add_tag / remove_tag
    tag: str | None = None
    # webhook
    url: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    payload: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _required_for_type(self):
        required = {
            ActionType.SEND_MESSAGE: "template_id",
            ActionType.UPDATE_PROPERTY: "property",
            ActionType.ADD_TAG: "tag",
            ActionType.REMOVE_TAG: "tag",
            ActionType.WEBHOOK: "url",
        }[self.type]
        if not getattr(self, required):
            raise ValueError(f"{self.type.value} action needs {required}")
        return self


class JourneyStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str | None = None
    delay: Delay = Field(default_factory=Delay)
    conditions: list[StepCondition] = Field(default_factory=list)
    action: StepAction | None = None
    next: str | None = None
    end: bool = False


class JourneyTrigger(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: TriggerType
    event: str | None = None
    conditions: list[Condition] = Field(default_factory=list)
    date_property: str | None = None
    offset_days: int = 0
    inactivity_days: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _complete(self):
        if self.type == TriggerType.EVENT and not self.event:
            raise ValueError("an event trigger needs an event name")
        if self.type == TriggerType.DATE_OFFSET and not self.date_property:
            raise ValueError("a date_offset trigger needs a date_property")
        if self.type == TriggerType.INACTIVITY and not self.inactivity_days:
            raise ValueError("an inactivity trigger needs inactivity_days")
        return self

    def matches(self, event_type: str, context: dict) -> bool:
        """True when an event of ``event_type`` satisfies every trigger condition."""
        if self.type != TriggerType.EVENT or event_type != self.event:
            return False
        return all(condition.evaluate(context) for condition in self.conditions)


class JourneySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    timezone: str = "UTC"
    max_messages_per_day: int | None = Field(default=None, ge=1)
    max_messages_per_week: int | None = Field(default=None, ge=1)
    respect_quiet_hours: bool = True
    exit_events: list[str] = Field(default_factory=list)
    allow_re_entry: bool = False
    re_entry_cooldown_days: int = Field(default=0, ge=0)
    max_participants: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _known_timezone(self):
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone: {self.timezone}") from None
        return self


class JourneyDefinition(BaseModel):
    name: str
    description: str | None = None
    trigger: JourneyTrigger
    steps: list[JourneyStep]
    branches: dict[str, str] = Field(default_factory=dict)
    settings: JourneySettings = Field(default_factory=JourneySettings)

    @model_validator(mode="after")
    def _check_graph(self):
        if not self.steps:
            raise ValueError("a journey needs at least one step")

        ids = [step.id for step in self.steps]
        if len(set(ids)) != len(ids):
            raise ValueError("step ids must be unique")

        linked = []
        for index, step in enumerate(self.steps):
            if step.next is None and not step.end and index + 1 < len(self.steps):
                step = step.model_copy(update={"next": self.steps[index + 1].id})
            linked.append(step)
        self.steps = linked

        known = set(ids)
        for step in self.steps:
            if step.next is not None and step.next not in known:
                raise ValueError(f"step {step.id} points to unknown step {step.next}")
            for condition in step.conditions:
                if condition.effect == ConditionEffect.BRANCH and condition.branch not in self.branches:
                    raise ValueError(f"step {step.id} uses unknown branch {condition.branch}")
        for name, target in self.branches.items():
            if target not in known:
                raise ValueError(f"branch {name} points to unknown step {target}")
        return self

    @property
    def first_step(self) -> JourneyStep:
        return self.steps[0]

    def step(self, step_id: str) -> JourneyStep:
        for step in self.steps:
            if step.id == step_id:
                return step
        raise KeyError(step_id)

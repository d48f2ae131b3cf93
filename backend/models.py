from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, Field, ValidationError, field_validator, model_validator

from errors import ValidationFailed
from tracker import Confirmation, Operation, Tracker


def as_utc(value: datetime) -> datetime:
    """Naive instants are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime) -> str:
    return as_utc(value).isoformat().replace("+00:00", "Z")


Instant = Annotated[datetime, AfterValidator(as_utc)]
Status = Literal["pending", "done"]


# Due dates: a closed union, one variant at a time

class FixedDue(BaseModel):
    kind: Literal["fixed"] = "fixed"
    at: Instant


class RangeDue(BaseModel):
    kind: Literal["range"] = "range"
    start: Instant
    end: Instant

    @model_validator(mode="after")
    def check_order(self):
        if self.start > self.end:
            raise ValueError("range start must not be after range end")
        return self


Due = Annotated[Union[FixedDue, RangeDue], Field(discriminator="kind")]


class Task(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    due: Optional[Due] = None
    status: Status = "pending"
    created_at: Instant

    @property
    def anchor(self) -> Optional[datetime]:
        """Instant used for before/after filters: fixed due, else range start."""
        if isinstance(self.due, FixedDue):
            return self.due.at
        if isinstance(self.due, RangeDue):
            return self.due.start
        return None


class SearchHit(BaseModel):
    id: str
    score: float


# Function call arguments

class DateRange(BaseModel):
    start: Instant
    end: Instant

    @model_validator(mode="after")
    def check_order(self):
        if self.start > self.end:
            raise ValueError("date_range start must not be after end")
        return self


def _blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (dict, list)):
        return not value
    return False


def _drop_blank(data):
    if not isinstance(data, dict):
        return data
    cleaned = {}
    for key, value in data.items():
        value = _drop_blank(value)
        if not _blank(value):
            cleaned[key] = value
    return cleaned


class CallArgs(BaseModel):
    """Base for argument records: blank strings and empty objects count as absent."""

    @model_validator(mode="before")
    @classmethod
    def strip_blank(cls, data):
        return _drop_blank(data)


class TaskPatch(CallArgs):
    name: Optional[str] = None
    desc: Optional[str] = None
    datetime: Optional[Instant] = None
    date_range: Optional[DateRange] = None
    status: Optional[Status] = None

    @model_validator(mode="after")
    def single_due(self):
        if self.datetime is not None and self.date_range is not None:
            raise ValueError("datetime and date_range are mutually exclusive")
        return self

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class TaskCreate(CallArgs):
    name: str
    desc: Optional[str] = None
    datetime: Optional[Instant] = None
    date_range: Optional[DateRange] = None
    status: Status = "pending"

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be empty")
        return value

    @model_validator(mode="after")
    def single_due(self):
        if self.datetime is not None and self.date_range is not None:
            raise ValueError("datetime and date_range are mutually exclusive")
        return self

    def due(self) -> Optional[Union[FixedDue, RangeDue]]:
        return due_from(self.datetime, self.date_range)


class TaskUpdate(TaskPatch):
    clear_due: bool = False


class AddArgs(TaskCreate):
    @model_validator(mode="after")
    def require_due(self):
        if self.datetime is None and self.date_range is None:
            raise ValueError("one of datetime or date_range is required")
        return self


class _TargetArgs(CallArgs):
    id: Optional[str] = None
    name: Optional[str] = None
    confirmation: Optional[Confirmation] = None

    @field_validator("confirmation", mode="before")
    @classmethod
    def lower_confirmation(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def require_target(self):
        if not self.id and not self.name:
            raise ValueError("id or name is required")
        return self

    @property
    def target(self) -> str:
        return self.id or self.name


class EditArgs(_TargetArgs):
    patch: TaskPatch

    @model_validator(mode="after")
    def require_patch(self):
        if self.patch.is_empty():
            raise ValueError("patch must change at least one field")
        return self


class RemoveArgs(_TargetArgs):
    pass


class FindArgs(CallArgs):
    name: Optional[str] = None
    status: Optional[Status] = None
    before: Optional[Instant] = None
    after: Optional[Instant] = None
    query: Optional[str] = None


ARGUMENT_MODELS = {
    "add_task": AddArgs,
    "edit_task": EditArgs,
    "remove_task": RemoveArgs,
    "find_tasks": FindArgs,
}

CallArguments = Union[AddArgs, EditArgs, RemoveArgs, FindArgs]


def due_from(at: Optional[datetime], date_range: Optional[DateRange]) -> Optional[Union[FixedDue, RangeDue]]:
    """Build the due union; a fixed instant takes precedence over a range."""
    if at is not None:
        return FixedDue(at=at)
    if date_range is not None:
        return RangeDue(start=date_range.start, end=date_range.end)
    return None


def missing_fields(name: str, arguments: Optional[dict]) -> list[str]:
    """Required slots for `name` that are absent from `arguments`."""
    args = _drop_blank(arguments or {})
    missing = []
    if name == "add_task":
        if "name" not in args:
            missing.append("name")
        date_range = args.get("date_range")
        has_range = isinstance(date_range, dict) and "start" in date_range and "end" in date_range
        if "datetime" not in args and not has_range:
            missing.append("date_range" if date_range else "datetime")
    elif name in ("edit_task", "remove_task"):
        if "id" not in args and "name" not in args:
            missing.append("id")
        if name == "edit_task" and not isinstance(args.get("patch"), dict):
            missing.append("patch")
    return missing


def parse_call_args(name: str, arguments: Optional[dict]) -> CallArguments:
    """Validate raw oracle arguments into the record for operation `name`."""
    model = ARGUMENT_MODELS.get(name)
    if model is None:
        raise ValidationFailed(f"Unknown operation '{name}'", ["name"])

    missing = missing_fields(name, arguments)
    if missing:
        raise ValidationFailed(f"{name} is missing {', '.join(missing)}", missing)

    try:
        return model.model_validate(arguments or {})
    except ValidationError as e:
        fields = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
        reasons = "; ".join(err["msg"] for err in e.errors())
        raise ValidationFailed(f"Invalid {name} arguments: {reasons}", fields) from e


# Oracle contract

class FunctionCall(BaseModel):
    name: Operation
    arguments: dict[str, Any] = Field(default_factory=dict)

    @field_validator("arguments", mode="before")
    @classmethod
    def default_arguments(cls, value):
        return value or {}


class OracleResponse(BaseModel):
    reply: str = ""
    function_call: Optional[FunctionCall] = None
    tracker: Tracker = Field(default_factory=Tracker)

    @field_validator("tracker", mode="before")
    @classmethod
    def default_tracker(cls, value):
        return value or {}

    @field_validator("function_call", mode="before")
    @classmethod
    def drop_empty_call(cls, value):
        # The model sometimes answers {} or {"name": "none"} instead of null
        if not value or (isinstance(value, dict) and value.get("name") in (None, "", "none")):
            return None
        return value


# HTTP payloads

class Message(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    message: str
    history: list[Message] = Field(default_factory=list)
    tracker: Optional[Tracker] = None
    conversation_id: Optional[int] = None

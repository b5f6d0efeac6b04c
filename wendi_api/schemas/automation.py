import re
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WorkingHours(_CamelModel):
    day: str
    open: bool = False
    start_time: str = "09:00"
    end_time: str = "17:00"

    @field_validator("day")
    @classmethod
    def _known_day(cls, value: str) -> str:
        normalized = value.strip().capitalize()
        if normalized not in WEEKDAYS:
            raise ValueError(f"unknown weekday '{value}'")
        return normalized

    @field_validator("start_time", "end_time")
    @classmethod
    def _hh_mm(cls, value: str) -> str:
        value = value.strip()
        if not _TIME_RE.match(value):
            raise ValueError(f"time must be HH:MM, got '{value}'")
        return value


class AutomationRule(_CamelModel):
    id: str
    enabled: bool = False
    description: str = ""
    response_type: Literal["text", "ai"] = Field(
        default="text",
        validation_alias=AliasChoices("responseType", "response_type", "type"),
        serialization_alias="responseType",
    )
    ai_prompt: str = ""
    threshold: Optional[int] = Field(default=None, ge=0)

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value) -> str:
        return str(value)

    @field_validator("ai_prompt", mode="before")
    @classmethod
    def _prompt_not_null(cls, value) -> str:
        return value or ""


class AutomationSettings(_CamelModel):
    holiday_mode: bool = False
    working_hours: list[WorkingHours]
    automation_rules: list[AutomationRule] = Field(default_factory=list)

    @model_validator(mode="after")
    def _one_entry_per_weekday(self) -> "AutomationSettings":
        days = [entry.day for entry in self.working_hours]
        if len(days) != 7 or set(days) != set(WEEKDAYS):
            raise ValueError("workingHours must contain exactly one entry for each of the 7 weekdays")
        return self

    def hours_for(self, day: str) -> Optional[WorkingHours]:
        for entry in self.working_hours:
            if entry.day == day:
                return entry
        return None


class RulePreviewRequest(_CamelModel):
    phone: str = ""
    message: str = ""
    conversation_id: Optional[int] = None


class RulePreviewResponse(_CamelModel):
    in_working_hours: bool
    rule_id: Optional[str] = None
    rule_kind: Optional[str] = None
    reason: str
    response: Optional[str] = None

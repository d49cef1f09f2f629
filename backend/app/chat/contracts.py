"""Pydantic contracts for JSON produced by the language model."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .types import IntentType


class ExtractedSlotsPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_name: str | None = Field(default=None, alias="eventName")
    club_name: str | None = Field(default=None, alias="clubName")
    location: str | None = None
    near_me: bool = Field(default=False, alias="nearMe")
    date: str | None = None
    filters: dict[str, Any] = Field(default_factory=dict)

    @field_validator("event_name", "club_name", "location", "date", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            value = value.strip()
            if not value or value.lower() in {"null", "none"}:
                return None
            return value
        return str(value)

    @field_validator("near_me", mode="before")
    @classmethod
    def _null_is_false(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("filters", mode="before")
    @classmethod
    def _filters_object(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}


class IntentPayload(BaseModel):
    """Intent JSON as produced by the classifier model."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: IntentType
    confidence: float = Field(default=0.5, allow_inf_nan=False)
    query: str | None = None
    extracted_slots: ExtractedSlotsPayload = Field(
        default_factory=ExtractedSlotsPayload, alias="extractedSlots"
    )

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("extracted_slots", mode="before")
    @classmethod
    def _slots_object(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}


class QueryPlanPayload(BaseModel):
    """Query JSON proposed by the model for the AI-assisted tier."""

    model_config = ConfigDict(extra="ignore")

    model: Literal["Club", "Event"]
    query: dict[str, Any] = Field(default_factory=dict)
    populate: list[dict[str, Any] | str] = Field(default_factory=list)

    @field_validator("query", mode="before")
    @classmethod
    def _null_query(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("populate", mode="before")
    @classmethod
    def _populate_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (str, dict)):
            return [value]
        return value

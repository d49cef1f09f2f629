"""Request and response models for the chat HTTP routes."""

from typing import Any, Literal

from pydantic import BaseModel, Field


class ChatTurnModel(BaseModel):
    role: Literal["user", "assistant"]
    content: str = ""
    timestamp: str | None = None
    referencedEventId: str | None = None


class UserLocationModel(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class ChatRequestBody(BaseModel):
    # left untyped so a missing or non-string message is reported by the engine
    message: Any = Field(default=None, description="Free-text user message")
    conversationHistory: list[ChatTurnModel] = Field(default_factory=list)
    city: Any = Field(default=None, description="City the app is browsing; defaults to Dubai")
    userLocation: UserLocationModel | None = None
    userId: str | None = Field(default=None, description="Requesting user, for booking questions")
    eventId: str | None = Field(default=None, description="Event the user is looking at, if any")
    preferences: dict[str, Any] | None = None
    screen: str | None = Field(default=None, description="HOME, MAP, BOOKINGS or PROFILE")
    stream: bool = Field(default=False, description="Deliver the answer as server-sent events")


class CardBlockModel(BaseModel):
    type: Literal["events", "clubs", "mixed"]
    title: str
    items: list[dict[str, Any]]


class ChatResponseData(BaseModel):
    response: str
    intent: str
    confidence: float
    cards: list[CardBlockModel]
    responseType: int
    referencedEventId: str | None = None


class ChatResponse(BaseModel):
    success: bool = True
    data: ChatResponseData


class PopularEvent(BaseModel):
    id: str
    name: str
    venue: str
    date: str | None = None


class SuggestionsData(BaseModel):
    suggestions: list[str]
    popularEvents: list[PopularEvent]


class SuggestionsResponse(BaseModel):
    success: bool = True
    data: SuggestionsData

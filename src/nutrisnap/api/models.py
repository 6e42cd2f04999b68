"""Request bodies for the HTTP API."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnalyzeRequest(_Request):
    """Image to analyze, as base64 or a data URL."""

    image_base64: str
    mime_type: str | None = None


class CorrectNameRequest(_Request):
    """User-supplied name for the food in the current image."""

    name: str = Field(min_length=1)


class PortionRequest(_Request):
    """New portion multiplier."""

    multiplier: float


class ChatRequest(_Request):
    """A chat message from the user."""

    message: str

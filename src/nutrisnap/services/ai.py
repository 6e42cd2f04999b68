"""Provider-neutral interface to the generative AI service."""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class InlineImage:
    """Image bytes attached to a prompt."""

    data: bytes
    mime_type: str


PromptPart = str | InlineImage


@dataclass(frozen=True)
class GenerateRequest:
    """A single content generation call.

    ``search_grounding`` and ``response_schema`` are not combined: a grounded
    call returns free text that has to be parsed afterwards.
    """

    model: str
    parts: list[PromptPart]
    search_grounding: bool = False
    response_schema: dict[str, object] | None = None
    schema_name: str = "response"
    reasoning_effort: str | None = None


@dataclass(frozen=True)
class Citation:
    """Raw citation as reported upstream; either field may be missing."""

    uri: str | None = None
    title: str | None = None


@dataclass(frozen=True)
class GenerateResponse:
    """Text output and any grounding citations."""

    text: str
    citations: list[Citation] = field(default_factory=list)


class ChatStream(Protocol):
    """A provider-side chat that remembers earlier turns."""

    def send_streaming(self, text: str) -> AsyncIterator[str]:
        """Send a user message and yield reply text deltas in order."""


class AIProvider(Protocol):
    """Interface for generative AI calls."""

    async def generate_content(self, request: GenerateRequest) -> GenerateResponse:
        """Run one generation call."""

    def create_chat_session(self, system_instruction: str) -> ChatStream:
        """Open a new chat with the given system instruction."""

"""OpenAI Responses API binding for the AI provider interface."""

import base64
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from openai import AsyncOpenAI, OpenAIError

from nutrisnap.domain.errors import TransportError
from nutrisnap.services.ai import (
    AIProvider,
    ChatStream,
    Citation,
    GenerateRequest,
    GenerateResponse,
    InlineImage,
    PromptPart,
)


@dataclass
class OpenAIProvider(AIProvider):
    """AI provider backed by OpenAI Responses API."""

    client: AsyncOpenAI
    chat_model: str
    store: bool = False

    @classmethod
    def create(
        cls, api_key: str, chat_model: str, store: bool = False
    ) -> "OpenAIProvider":
        """Create a provider with its own OpenAI client."""
        return cls(
            client=AsyncOpenAI(api_key=api_key), chat_model=chat_model, store=store
        )

    async def generate_content(self, request: GenerateRequest) -> GenerateResponse:
        """Call OpenAI with optional web search or structured output."""
        request_payload: dict[str, object] = {
            "model": request.model,
            "input": [
                {
                    "role": "user",
                    "content": [_content_part(part) for part in request.parts],
                }
            ],
            "store": self.store,
        }
        if request.search_grounding:
            request_payload["tools"] = [{"type": "web_search"}]
        if request.response_schema is not None:
            request_payload["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": request.schema_name,
                    "strict": True,
                    "schema": request.response_schema,
                }
            }
        if request.reasoning_effort:
            request_payload["reasoning"] = {"effort": request.reasoning_effort}

        try:
            response = await self.client.responses.create(**request_payload)
        except OpenAIError as exc:
            raise TransportError(f"OpenAI request failed: {exc}") from exc
        return GenerateResponse(
            text=response.output_text or "",
            citations=_extract_citations(response),
        )

    def create_chat_session(self, system_instruction: str) -> "OpenAIChatSession":
        """Open a chat that replays its history on every turn."""
        return OpenAIChatSession(
            client=self.client,
            model=self.chat_model,
            instructions=system_instruction,
            store=self.store,
        )

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.client.close()


@dataclass
class OpenAIChatSession(ChatStream):
    """Streaming chat over the Responses API."""

    client: AsyncOpenAI
    model: str
    instructions: str
    store: bool = False
    history: list[dict[str, str]] = field(default_factory=list)

    async def send_streaming(self, text: str) -> AsyncIterator[str]:
        """Stream reply deltas; history is extended only after a full reply."""
        messages = [*self.history, {"role": "user", "content": text}]
        reply: list[str] = []
        try:
            stream = await self.client.responses.create(
                model=self.model,
                instructions=self.instructions,
                input=messages,
                store=self.store,
                stream=True,
            )
            async for event in stream:
                if event.type == "response.output_text.delta":
                    reply.append(event.delta)
                    yield event.delta
                elif event.type in {"error", "response.failed"}:
                    message = getattr(event, "message", None) or event.type
                    raise TransportError(f"OpenAI stream failed: {message}")
        except OpenAIError as exc:
            raise TransportError(f"OpenAI stream failed: {exc}") from exc
        self.history = [*messages, {"role": "assistant", "content": "".join(reply)}]


def _content_part(part: PromptPart) -> dict[str, str]:
    if isinstance(part, InlineImage):
        return {"type": "input_image", "image_url": to_data_url(part)}
    return {"type": "input_text", "text": part}


def _extract_citations(response: object) -> list[Citation]:
    """Collect url_citation annotations from message output items."""
    citations: list[Citation] = []
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) != "message":
            continue
        for content in getattr(item, "content", None) or []:
            for annotation in getattr(content, "annotations", None) or []:
                if getattr(annotation, "type", None) != "url_citation":
                    continue
                citations.append(
                    Citation(
                        uri=getattr(annotation, "url", None),
                        title=getattr(annotation, "title", None),
                    )
                )
    return citations


def to_data_url(image: InlineImage) -> str:
    """Convert an inline image to a base64 data URL."""
    encoded = base64.b64encode(image.data).decode("utf-8")
    return f"data:{image.mime_type};base64,{encoded}"

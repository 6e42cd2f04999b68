"""Streaming nutrition assistant chat."""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from nutrisnap.domain.chat import ChatTurn
from nutrisnap.domain.errors import InvalidArgumentError
from nutrisnap.services.ai import AIProvider, ChatStream

_logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are a friendly and knowledgeable nutrition and health chatbot. Answer "
    "questions clearly and concisely. If you are unsure, say you do not know."
)
GREETING = (
    "Hello! I'm your AI nutrition assistant. Ask me anything about your food "
    "results or general health."
)
FALLBACK_REPLY = "Sorry, I encountered an error. Please try again."


@dataclass
class ConversationSession:
    """Ordered chat turns backed by a provider chat.

    The last model turn is extended in place as reply chunks arrive.
    """

    provider: AIProvider
    system_instruction: str = SYSTEM_INSTRUCTION
    turns: list[ChatTurn] = field(init=False)
    _chat: ChatStream = field(init=False, repr=False)
    _streaming: bool = field(default=False, init=False, repr=False)
    _stream_id: int = field(default=0, init=False, repr=False)

    def __post_init__(self) -> None:
        self.reset()

    @property
    def is_streaming(self) -> bool:
        """True while a reply is being received."""
        return self._streaming

    def reset(self) -> None:
        """Start over with only the greeting."""
        self.turns = [ChatTurn(role="model", text=GREETING)]
        self._chat = self.provider.create_chat_session(self.system_instruction)
        self._streaming = False

    def stream_reply(self, user_text: str) -> AsyncIterator[str]:
        """Record the user's message and return the reply chunks as they arrive."""
        message = user_text.strip()
        if not message:
            raise InvalidArgumentError("Message cannot be empty.")
        if self._streaming:
            raise InvalidArgumentError("Please wait for the current reply.")
        self._streaming = True
        self._stream_id += 1
        self.turns.append(ChatTurn(role="user", text=message))
        reply = ChatTurn(role="model", text="")
        self.turns.append(reply)
        return self._receive(self._chat, message, reply, self._stream_id)

    async def send(self, user_text: str) -> ChatTurn:
        """Send a message and return the completed model turn."""
        stream = self.stream_reply(user_text)
        async for _chunk in stream:
            pass
        return self.turns[-1]

    async def _receive(
        self, chat: ChatStream, message: str, reply: ChatTurn, stream_id: int
    ) -> AsyncIterator[str]:
        try:
            async for chunk in chat.send_streaming(message):
                reply.text += chunk
                yield chunk
        except Exception:
            _logger.exception("Chat reply failed")
            reply.text = FALLBACK_REPLY
        finally:
            if stream_id == self._stream_id:
                self._streaming = False

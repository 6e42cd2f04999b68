"""Domain models for the assistant chat."""

from dataclasses import dataclass
from typing import Literal

ChatRole = Literal["user", "model"]


@dataclass
class ChatTurn:
    """One message in a conversation. Model turns grow while streaming."""

    role: ChatRole
    text: str

"""Domain models for the local mock session."""

from dataclasses import dataclass


@dataclass(frozen=True)
class User:
    """Represents the logged-in identity."""

    name: str
    email: str
    picture: str


DEMO_USER = User(
    name="Alex Doe",
    email="alex.doe@example.com",
    picture="https://i.pravatar.cc/150?u=alexdoe",
)

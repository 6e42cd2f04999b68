"""Domain error taxonomy."""


class NutriSnapError(Exception):
    """Base class for application errors."""


class EmptyResponseError(NutriSnapError):
    """The AI service returned nothing usable."""


class ParseError(NutriSnapError):
    """An AI payload was malformed or did not match the expected schema."""

    def __init__(self, message: str, raw_text: str) -> None:
        super().__init__(message)
        self.raw_text = raw_text


class InvalidArgumentError(NutriSnapError, ValueError):
    """A caller passed a bad argument or a prerequisite is missing."""


class TransportError(NutriSnapError):
    """The AI provider could not be reached or failed the request."""


class NoSessionError(NutriSnapError):
    """A persistence operation was attempted without a logged-in user."""

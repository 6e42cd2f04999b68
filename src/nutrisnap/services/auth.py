"""Mock local session."""

import logging
from dataclasses import asdict, dataclass

from nutrisnap.domain.auth import DEMO_USER, User
from nutrisnap.domain.errors import NoSessionError
from nutrisnap.services.storage import KeyValueStore

AUTH_KEY = "nutrisnap_user"

_logger = logging.getLogger(__name__)


@dataclass
class AuthService:
    """Creates and clears the single demo session."""

    store: KeyValueStore

    def login(self) -> User:
        """Log in as the demo user."""
        try:
            self.store.set(AUTH_KEY, asdict(DEMO_USER))
        except Exception:
            _logger.exception("Failed to persist session")
        return DEMO_USER

    def logout(self) -> None:
        """Clear the session."""
        try:
            self.store.delete(AUTH_KEY)
        except Exception:
            _logger.exception("Failed to clear session")

    def current_user(self) -> User | None:
        """Return the logged-in user, if any."""
        try:
            raw = self.store.get(AUTH_KEY)
        except Exception:
            _logger.exception("Failed to read session")
            return None
        if not isinstance(raw, dict):
            return None
        try:
            return User(
                name=str(raw["name"]),
                email=str(raw["email"]),
                picture=str(raw["picture"]),
            )
        except KeyError:
            _logger.warning("Ignoring malformed session record")
            return None

    def require_user(self) -> User:
        """Return the logged-in user or raise NoSessionError."""
        user = self.current_user()
        if user is None:
            raise NoSessionError("No user is logged in.")
        return user

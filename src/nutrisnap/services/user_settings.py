"""User settings service."""

import logging
from dataclasses import dataclass

from pydantic import ValidationError

from nutrisnap.domain.auth import User
from nutrisnap.domain.user_settings import UserSettings
from nutrisnap.services.auth import AuthService
from nutrisnap.services.storage import KeyValueStore

_logger = logging.getLogger(__name__)


def settings_key(user: User) -> str:
    """Storage key for a user's settings."""
    return f"nutrisnap_settings_{user.email}"


@dataclass
class UserSettingsService:
    """Reads and writes the current user's settings."""

    store: KeyValueStore
    auth_service: AuthService

    def get(self) -> UserSettings:
        """Return stored settings merged over defaults."""
        user = self.auth_service.current_user()
        if user is None:
            return UserSettings()
        try:
            raw = self.store.get(settings_key(user))
        except Exception:
            _logger.exception("Failed to read settings")
            return UserSettings()
        if raw is None:
            return UserSettings()
        try:
            return UserSettings.model_validate(raw)
        except ValidationError:
            _logger.warning("Stored settings are invalid; using defaults")
            return UserSettings()

    def save(self, settings: UserSettings) -> UserSettings:
        """Overwrite the current user's settings."""
        user = self.auth_service.require_user()
        try:
            self.store.set(
                settings_key(user), settings.model_dump(mode="json", by_alias=True)
            )
        except Exception:
            _logger.exception("Failed to save settings")
        return settings

"""Meal reminders with a daily health tip."""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from nutrisnap.domain.errors import EmptyResponseError
from nutrisnap.domain.user_settings import UserSettings
from nutrisnap.services.ai import AIProvider, GenerateRequest

_logger = logging.getLogger(__name__)

FALLBACK_TIP = "Remember to eat a balanced meal with plenty of vegetables!"

_TIP_PROMPT = (
    "You are a health and wellness coach. Provide a single, short, actionable "
    "health or nutrition tip for the day. Keep it under 20 words. For example: "
    "'Stay hydrated! Drink a glass of water before each meal.' or 'Take a "
    "10-minute walk after lunch to aid digestion.'"
)


@dataclass(frozen=True)
class ReminderNotification:
    """A meal reminder to show the user."""

    meal: str
    tip: str


@dataclass
class HealthTipService:
    """Fetches a short daily tip, falling back to a fixed one."""

    provider: AIProvider
    model: str

    async def daily_tip(self) -> str:
        """Return a tip; never raises."""
        try:
            response = await self.provider.generate_content(
                GenerateRequest(model=self.model, parts=[_TIP_PROMPT])
            )
            tip = response.text.strip()
            if not tip:
                raise EmptyResponseError("Received an empty health tip from the AI.")
        except Exception:
            _logger.exception("Health tip failed")
            return FALLBACK_TIP
        return tip


@dataclass
class ReminderService:
    """Decides when a meal reminder is due.

    Each reminder fires at most once per day, on the minute it is set for.
    """

    tip_service: HealthTipService
    _notified: set[str] = field(default_factory=set, init=False, repr=False)

    def due_meal(self, settings: UserSettings, now: datetime) -> str | None:
        """Return the meal whose reminder is due now, marking it as sent."""
        reminders = settings.meal_reminders
        if not reminders.enabled:
            return None
        current_date = now.date().isoformat()
        current_time = now.strftime("%H:%M")
        self._notified = {
            notified for notified in self._notified if notified.startswith(current_date)
        }
        meals = (
            ("Breakfast", reminders.breakfast),
            ("Lunch", reminders.lunch),
            ("Dinner", reminders.dinner),
        )
        for meal, time in meals:
            notification_id = f"{current_date}-{time}"
            if current_time == time and notification_id not in self._notified:
                self._notified.add(notification_id)
                return meal
        return None

    async def check(
        self, settings: UserSettings, now: datetime
    ) -> ReminderNotification | None:
        """Return a notification with a tip if a reminder is due."""
        meal = self.due_meal(settings, now)
        if meal is None:
            return None
        return ReminderNotification(meal=meal, tip=await self.tip_service.daily_tip())

"""Per-user preferences."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DailyGoals(_Model):
    """Daily intake targets."""

    calories: float = Field(default=2000, ge=0)
    protein: float = Field(default=100, ge=0)
    carbs: float = Field(default=250, ge=0)


class MealReminders(_Model):
    """Reminder times in local HH:MM."""

    enabled: bool = False
    breakfast: str = Field(default="08:00", pattern=_TIME_PATTERN)
    lunch: str = Field(default="13:00", pattern=_TIME_PATTERN)
    dinner: str = Field(default="19:00", pattern=_TIME_PATTERN)


class UserSettings(_Model):
    """User preferences. Missing keys fall back to defaults at every level."""

    daily_goals: DailyGoals = Field(default_factory=DailyGoals)
    meal_reminders: MealReminders = Field(default_factory=MealReminders)
    show_supplement_suggestions: bool = False

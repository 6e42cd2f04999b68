"""Goal progress and risk averages over saved history."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from nutrisnap.domain.analysis import HealthRiskAssessment, HistoryEntry, Risk
from nutrisnap.domain.user_settings import DailyGoals
from nutrisnap.services.history import HistoryService


class Period(str, Enum):
    """History filter windows."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


_PERIOD_DAYS = {Period.WEEKLY: 7, Period.MONTHLY: 30}


@dataclass(frozen=True)
class GoalProgress:
    """Intake against one daily goal."""

    current: float
    goal: float
    percentage: float


@dataclass(frozen=True)
class DailyProgress:
    """Today's intake against the user's goals."""

    calories: GoalProgress
    protein: GoalProgress
    carbs: GoalProgress


@dataclass(frozen=True)
class HistorySummary:
    """Summary of a history window."""

    period: Period
    entries: list[HistoryEntry]
    progress: DailyProgress
    average_risks: HealthRiskAssessment | None


@dataclass
class StatsService:
    """Computes summaries over the user's history."""

    history_service: HistoryService

    def summarize(
        self, period: Period, goals: DailyGoals, now: datetime
    ) -> HistorySummary:
        """Return entries in the window, today's progress and average risks."""
        entries = self.history_service.list_entries()
        in_period = filter_period(entries, period, now)
        return HistorySummary(
            period=period,
            entries=in_period,
            progress=daily_progress(filter_period(entries, Period.DAILY, now), goals),
            average_risks=average_risks(in_period),
        )


def filter_period(
    entries: list[HistoryEntry], period: Period, now: datetime
) -> list[HistoryEntry]:
    """Keep entries from today, the last 7 days or the last 30 days."""
    if period is Period.DAILY:
        today = now.date()
        return [
            entry
            for entry in entries
            if entry.timestamp.astimezone(now.tzinfo).date() == today
        ]
    start = now - timedelta(days=_PERIOD_DAYS[period])
    return [entry for entry in entries if entry.timestamp >= start]


def daily_progress(entries: list[HistoryEntry], goals: DailyGoals) -> DailyProgress:
    """Sum calories, protein and carbs against the goals."""
    calories = 0.0
    protein = 0.0
    carbs = 0.0
    for entry in entries:
        info = entry.analysis.nutritional_info
        calories += info.calories
        protein += info.protein
        carbs += info.carbohydrates.total
    return DailyProgress(
        calories=_progress(calories, goals.calories),
        protein=_progress(protein, goals.protein),
        carbs=_progress(carbs, goals.carbs),
    )


def average_risks(entries: list[HistoryEntry]) -> HealthRiskAssessment | None:
    """Mean risk score per condition, or None without entries."""
    if not entries:
        return None
    count = len(entries)
    diabetes = sum(entry.risks.diabetes.score for entry in entries)
    hypertension = sum(entry.risks.hypertension.score for entry in entries)
    cholesterol = sum(entry.risks.cholesterol.score for entry in entries)
    return HealthRiskAssessment(
        diabetes=Risk(score=diabetes / count, reasoning=""),
        hypertension=Risk(score=hypertension / count, reasoning=""),
        cholesterol=Risk(score=cholesterol / count, reasoning=""),
    )


def _progress(current: float, goal: float) -> GoalProgress:
    percentage = min(current / goal * 100, 100.0) if goal > 0 else 0.0
    return GoalProgress(current=current, goal=goal, percentage=percentage)

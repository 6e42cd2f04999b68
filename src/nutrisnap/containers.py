"""Dependency container wiring for the application."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from nutrisnap.adapters.openai_ai_provider import OpenAIProvider
from nutrisnap.adapters.supabase_kv_store import SupabaseKeyValueStore
from nutrisnap.config import Settings
from nutrisnap.services.ai import AIProvider
from nutrisnap.services.analysis import AnalysisOrchestrator
from nutrisnap.services.auth import AuthService
from nutrisnap.services.chat import ConversationSession
from nutrisnap.services.history import HistoryService
from nutrisnap.services.reminders import HealthTipService, ReminderService
from nutrisnap.services.stats import StatsService
from nutrisnap.services.storage import InMemoryKeyValueStore, KeyValueStore
from nutrisnap.services.user_settings import UserSettingsService

_logger = logging.getLogger(__name__)


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    ai_provider: AIProvider
    auth_service: AuthService
    user_settings_service: UserSettingsService
    history_service: HistoryService
    stats_service: StatsService
    analysis_orchestrator: AnalysisOrchestrator
    conversation_session: ConversationSession
    reminder_service: ReminderService
    close_resources: Callable[[], Awaitable[None]]


def build_store(settings: Settings) -> KeyValueStore:
    """Use Supabase when configured, otherwise keep data in memory."""
    if settings.supabase_enabled:
        client = create_client(settings.supabase_url, settings.supabase_service_key)
        return SupabaseKeyValueStore(client, table=settings.supabase_kv_table)
    _logger.info("Supabase is not configured; storing data in memory")
    return InMemoryKeyValueStore()


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    store = build_store(resolved_settings)
    ai_provider = OpenAIProvider.create(
        resolved_settings.openai_api_key,
        chat_model=resolved_settings.openai_chat_model,
        store=resolved_settings.openai_store,
    )
    auth_service = AuthService(store)
    history_service = HistoryService(store, auth_service)
    orchestrator = AnalysisOrchestrator(
        provider=ai_provider,
        analysis_model=resolved_settings.openai_model,
        risk_model=resolved_settings.openai_risk_model,
        reasoning_effort=resolved_settings.openai_reasoning_effort,
    )
    reminder_service = ReminderService(
        HealthTipService(
            provider=ai_provider, model=resolved_settings.openai_chat_model
        )
    )

    async def close_resources() -> None:
        await ai_provider.close()

    return AppContainer(
        settings=resolved_settings,
        ai_provider=ai_provider,
        auth_service=auth_service,
        user_settings_service=UserSettingsService(store, auth_service),
        history_service=history_service,
        stats_service=StatsService(history_service),
        analysis_orchestrator=orchestrator,
        conversation_session=ConversationSession(ai_provider),
        reminder_service=reminder_service,
        close_resources=close_resources,
    )

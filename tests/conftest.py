"""Shared test fixtures."""

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import pytest

from nutrisnap.config import Settings
from nutrisnap.containers import AppContainer
from nutrisnap.domain.errors import TransportError
from nutrisnap.services.ai import (
    AIProvider,
    ChatStream,
    GenerateRequest,
    GenerateResponse,
)
from nutrisnap.services.analysis import AnalysisOrchestrator
from nutrisnap.services.auth import AuthService
from nutrisnap.services.chat import ConversationSession
from nutrisnap.services.history import HistoryService
from nutrisnap.services.reminders import HealthTipService, ReminderService
from nutrisnap.services.stats import StatsService
from nutrisnap.services.storage import InMemoryKeyValueStore, KeyValueStore
from nutrisnap.services.user_settings import UserSettingsService

BASE_NUTRITION: dict[str, object] = {
    "foodName": "Chicken salad",
    "estimatedWeight": 150,
    "calories": 200,
    "protein": 10,
    "carbohydrates": {"total": 20, "sugar": 5},
    "fat": {"total": 8, "saturated": 2},
    "sodium": 300,
    "cholesterol": 20,
}


def nutrition_json(**overrides: object) -> str:
    """Nutrition payload as the model would return it."""
    return json.dumps({**BASE_NUTRITION, **overrides})


def risk_json(score: float = 3) -> str:
    """Risk payload with the same score for every condition."""
    return json.dumps(
        {
            "diabetes": {"score": score, "reasoning": "Moderate sugar."},
            "hypertension": {"score": score, "reasoning": "Some sodium."},
            "cholesterol": {"score": score, "reasoning": "Low saturated fat."},
        }
    )


def supplements_json() -> str:
    return json.dumps(
        {"suggestions": [{"name": "Fiber", "reason": "Slows sugar absorption."}]}
    )


@dataclass
class FakeChatStream(ChatStream):
    """Chat that replays fixed chunks, optionally failing partway."""

    chunks: list[str] = field(default_factory=lambda: ["He", "llo ", "there"])
    fail_after: int | None = None
    error: type[Exception] = TransportError
    sent: list[str] = field(default_factory=list)

    async def send_streaming(self, text: str) -> AsyncIterator[str]:
        self.sent.append(text)
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index >= self.fail_after:
                raise self.error("stream dropped")
            yield chunk


@dataclass
class FakeAIProvider(AIProvider):
    """Provider returning queued responses in call order."""

    responses: list[GenerateResponse | Exception] = field(default_factory=list)
    requests: list[GenerateRequest] = field(default_factory=list)
    chat_chunks: list[str] = field(default_factory=lambda: ["He", "llo ", "there"])
    chat_fail_after: int | None = None
    chat_error: type[Exception] = TransportError
    chats: list[FakeChatStream] = field(default_factory=list)
    instructions: list[str] = field(default_factory=list)

    def queue(self, *results: str | GenerateResponse | Exception) -> None:
        for result in results:
            if isinstance(result, str):
                result = GenerateResponse(text=result)
            self.responses.append(result)

    async def generate_content(self, request: GenerateRequest) -> GenerateResponse:
        self.requests.append(request)
        if not self.responses:
            raise TransportError("no response queued")
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def create_chat_session(self, system_instruction: str) -> FakeChatStream:
        self.instructions.append(system_instruction)
        chat = FakeChatStream(
            chunks=list(self.chat_chunks),
            fail_after=self.chat_fail_after,
            error=self.chat_error,
        )
        self.chats.append(chat)
        return chat


@dataclass
class FailingKeyValueStore(KeyValueStore):
    """Store whose writes always fail."""

    inner: InMemoryKeyValueStore = field(default_factory=InMemoryKeyValueStore)

    def get(self, key: str) -> object | None:
        return self.inner.get(key)

    def set(self, key: str, value: object) -> None:
        if key.startswith("nutrisnap_user"):
            self.inner.set(key, value)
            return
        raise RuntimeError("quota exceeded")

    def delete(self, key: str) -> None:
        self.inner.delete(key)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        openai_api_key="openai-key",
        supabase_url=None,
        supabase_service_key=None,
    )


@pytest.fixture
def provider() -> FakeAIProvider:
    return FakeAIProvider()


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def auth_service(store: InMemoryKeyValueStore) -> AuthService:
    return AuthService(store)


@pytest.fixture
def orchestrator(provider: FakeAIProvider) -> AnalysisOrchestrator:
    return AnalysisOrchestrator(
        provider=provider, analysis_model="analysis-model", risk_model="risk-model"
    )


@pytest.fixture
def container(
    settings: Settings,
    provider: FakeAIProvider,
    store: InMemoryKeyValueStore,
    auth_service: AuthService,
    orchestrator: AnalysisOrchestrator,
) -> AppContainer:
    history_service = HistoryService(store, auth_service)

    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        ai_provider=provider,
        auth_service=auth_service,
        user_settings_service=UserSettingsService(store, auth_service),
        history_service=history_service,
        stats_service=StatsService(history_service),
        analysis_orchestrator=orchestrator,
        conversation_session=ConversationSession(provider),
        reminder_service=ReminderService(
            HealthTipService(provider=provider, model="chat-model")
        ),
        close_resources=close_resources,
    )

"""FastAPI application factory."""

import base64
import binascii
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

from nutrisnap.api.models import (
    AnalyzeRequest,
    ChatRequest,
    CorrectNameRequest,
    PortionRequest,
)
from nutrisnap.app_logging import configure_logging
from nutrisnap.containers import AppContainer
from nutrisnap.domain.errors import InvalidArgumentError, NoSessionError
from nutrisnap.domain.user_settings import UserSettings
from nutrisnap.services.analysis import AnalysisState
from nutrisnap.services.stats import HistorySummary, Period


def create_app(container: AppContainer) -> FastAPI:  # noqa: PLR0915
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.exception_handler(NoSessionError)
    async def no_session_handler(
        request: Request, exc: NoSessionError
    ) -> JSONResponse:
        return JSONResponse(status_code=401, content={"detail": str(exc)})

    @app.exception_handler(InvalidArgumentError)
    async def invalid_argument_handler(
        request: Request, exc: InvalidArgumentError
    ) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/auth/login")
    async def login(request: Request) -> dict[str, object]:
        """Start the demo session."""
        state_container: AppContainer = request.app.state.container
        user = state_container.auth_service.login()
        return {"user": asdict(user)}

    @app.post("/auth/logout")
    async def logout(request: Request) -> dict[str, str]:
        """End the session and drop any in-progress work."""
        state_container: AppContainer = request.app.state.container
        state_container.auth_service.logout()
        state_container.analysis_orchestrator.reset()
        state_container.conversation_session.reset()
        return {"status": "ok"}

    @app.get("/auth/me")
    async def me(request: Request) -> dict[str, object]:
        """Return the logged-in user, if any."""
        state_container: AppContainer = request.app.state.container
        user = state_container.auth_service.current_user()
        return {"user": asdict(user) if user else None}

    @app.get("/settings")
    async def get_settings(request: Request) -> dict[str, object]:
        """Return the user's settings merged over defaults."""
        state_container: AppContainer = request.app.state.container
        settings = state_container.user_settings_service.get()
        return settings.model_dump(mode="json", by_alias=True)

    @app.put("/settings")
    async def put_settings(
        settings: UserSettings, request: Request
    ) -> dict[str, object]:
        """Overwrite the user's settings."""
        state_container: AppContainer = request.app.state.container
        saved = state_container.user_settings_service.save(settings)
        return saved.model_dump(mode="json", by_alias=True)

    @app.get("/history")
    async def history(request: Request) -> dict[str, object]:
        """Return saved entries, newest first."""
        state_container: AppContainer = request.app.state.container
        entries = state_container.history_service.list_entries()
        return {
            "entries": [
                entry.model_dump(mode="json", by_alias=True) for entry in entries
            ]
        }

    @app.get("/history/summary")
    async def history_summary(
        request: Request, period: Period = Period.DAILY
    ) -> dict[str, object]:
        """Return goal progress and average risks for a period."""
        state_container: AppContainer = request.app.state.container
        goals = state_container.user_settings_service.get().daily_goals
        summary = state_container.stats_service.summarize(
            period, goals, datetime.now().astimezone()
        )
        return _summary_payload(summary)

    @app.get("/analysis")
    async def get_analysis(request: Request) -> dict[str, object]:
        """Return the active analysis slot."""
        state_container: AppContainer = request.app.state.container
        return _state_payload(state_container.analysis_orchestrator.state)

    @app.post("/analysis")
    async def submit_analysis(
        payload: AnalyzeRequest, request: Request
    ) -> dict[str, object]:
        """Analyze a new meal photo."""
        state_container: AppContainer = request.app.state.container
        state_container.auth_service.require_user()
        image_bytes, mime_type = _decode_image(payload)
        settings = state_container.user_settings_service.get()
        state = await state_container.analysis_orchestrator.submit_image(
            image_bytes,
            mime_type,
            include_supplements=settings.show_supplement_suggestions,
        )
        if state.error:
            logger.info("Analysis finished with error: %s", state.error)
        return _state_payload(state)

    @app.delete("/analysis")
    async def reset_analysis(request: Request) -> dict[str, object]:
        """Discard the active analysis."""
        state_container: AppContainer = request.app.state.container
        state_container.analysis_orchestrator.reset()
        return _state_payload(state_container.analysis_orchestrator.state)

    @app.post("/analysis/name")
    async def correct_name(
        payload: CorrectNameRequest, request: Request
    ) -> dict[str, object]:
        """Re-analyze the current photo under a user-supplied name."""
        state_container: AppContainer = request.app.state.container
        state_container.auth_service.require_user()
        settings = state_container.user_settings_service.get()
        state = await state_container.analysis_orchestrator.correct_name(
            payload.name,
            include_supplements=settings.show_supplement_suggestions,
        )
        return _state_payload(state)

    @app.post("/analysis/portion")
    async def change_portion(
        payload: PortionRequest, request: Request
    ) -> dict[str, object]:
        """Scale the current analysis and refresh risks."""
        state_container: AppContainer = request.app.state.container
        state_container.auth_service.require_user()
        settings = state_container.user_settings_service.get()
        state = await state_container.analysis_orchestrator.change_portion(
            payload.multiplier,
            include_supplements=settings.show_supplement_suggestions,
        )
        return _state_payload(state)

    @app.post("/analysis/save")
    async def save_analysis(request: Request) -> dict[str, object]:
        """Save the current analysis to history and reset the slot."""
        state_container: AppContainer = request.app.state.container
        state_container.auth_service.require_user()
        entry = state_container.analysis_orchestrator.save_current()
        state_container.history_service.append(entry)
        return {"entry": entry.model_dump(mode="json", by_alias=True)}

    @app.get("/chat/messages")
    async def chat_messages(request: Request) -> dict[str, object]:
        """Return the conversation so far."""
        state_container: AppContainer = request.app.state.container
        return {
            "messages": [
                asdict(turn) for turn in state_container.conversation_session.turns
            ]
        }

    @app.post("/chat/messages")
    async def send_chat_message(
        payload: ChatRequest, request: Request
    ) -> StreamingResponse:
        """Stream the assistant's reply as plain text."""
        state_container: AppContainer = request.app.state.container
        chunks = state_container.conversation_session.stream_reply(payload.message)
        return StreamingResponse(chunks, media_type="text/plain; charset=utf-8")

    @app.post("/chat/reset")
    async def reset_chat(request: Request) -> dict[str, object]:
        """Start a new conversation."""
        state_container: AppContainer = request.app.state.container
        state_container.conversation_session.reset()
        return {
            "messages": [
                asdict(turn) for turn in state_container.conversation_session.turns
            ]
        }

    @app.get("/reminders/due")
    async def due_reminder(request: Request) -> dict[str, object]:
        """Return a meal reminder if one is due this minute."""
        state_container: AppContainer = request.app.state.container
        if state_container.auth_service.current_user() is None:
            return {"notification": None}
        settings = state_container.user_settings_service.get()
        notification = await state_container.reminder_service.check(
            settings, datetime.now().astimezone()
        )
        return {"notification": asdict(notification) if notification else None}

    return app


def _decode_image(payload: AnalyzeRequest) -> tuple[bytes, str | None]:
    """Decode base64 image data, accepting data URLs."""
    data = payload.image_base64.strip()
    mime_type = payload.mime_type
    if data.startswith("data:"):
        header, _, data = data.partition(",")
        mime_type = mime_type or header[len("data:") :].split(";")[0] or None
    try:
        image_bytes = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidArgumentError("Image data is not valid base64.") from exc
    if not image_bytes:
        raise InvalidArgumentError("An image is required.")
    return image_bytes, mime_type


def _state_payload(state: AnalysisState) -> dict[str, object]:
    return {
        "status": state.status.value,
        "analysis": (
            state.analysis.model_dump(mode="json", by_alias=True)
            if state.analysis
            else None
        ),
        "risks": (
            state.risks.model_dump(mode="json", by_alias=True) if state.risks else None
        ),
        "supplements": [
            suggestion.model_dump(mode="json", by_alias=True)
            for suggestion in state.supplements
        ],
        "portionMultiplier": state.portion_multiplier,
        "error": state.error,
        "supplementError": state.supplement_error,
    }


def _summary_payload(summary: HistorySummary) -> dict[str, object]:
    progress = summary.progress
    return {
        "period": summary.period.value,
        "entries": [
            entry.model_dump(mode="json", by_alias=True) for entry in summary.entries
        ],
        "progress": {
            "calories": asdict(progress.calories),
            "protein": asdict(progress.protein),
            "carbs": asdict(progress.carbs),
        },
        "averageRisks": (
            summary.average_risks.model_dump(mode="json", by_alias=True)
            if summary.average_risks
            else None
        ),
    }

"""Tests for the analysis orchestrator."""

import asyncio
from dataclasses import dataclass, field

import pytest

from nutrisnap.domain.analysis import FoodAnalysis, NutritionalInfo
from nutrisnap.domain.errors import (
    EmptyResponseError,
    InvalidArgumentError,
    TransportError,
)
from nutrisnap.services.ai import (
    AIProvider,
    Citation,
    GenerateRequest,
    GenerateResponse,
    InlineImage,
)
from nutrisnap.services.analysis import (
    ANALYSIS_FAILED_MESSAGE,
    HEALTH_RISK_SCHEMA,
    RISK_FAILED_MESSAGE,
    SUPPLEMENT_SCHEMA,
    SUPPLEMENTS_FAILED_MESSAGE,
    AnalysisOrchestrator,
    AnalysisState,
    AnalysisStatus,
    detect_mime_type,
)
from nutrisnap.services.parser import parse_risk_assessment
from tests.conftest import (
    BASE_NUTRITION,
    FakeAIProvider,
    nutrition_json,
    risk_json,
    supplements_json,
)

JPEG = b"\xff\xd8\xff\xe0fake-jpeg"


@dataclass
class GatedAIProvider(AIProvider):
    """Provider whose calls block until the test resolves them."""

    requests: list[GenerateRequest] = field(default_factory=list)
    gates: list[asyncio.Future[GenerateResponse]] = field(default_factory=list)

    async def generate_content(self, request: GenerateRequest) -> GenerateResponse:
        self.requests.append(request)
        gate: asyncio.Future[GenerateResponse] = (
            asyncio.get_running_loop().create_future()
        )
        self.gates.append(gate)
        return await gate

    def create_chat_session(self, system_instruction: str):  # type: ignore[no-untyped-def]
        raise NotImplementedError


def _ready_state() -> AnalysisState:
    analysis = FoodAnalysis(
        nutritional_info=NutritionalInfo.model_validate(BASE_NUTRITION)
    )
    return AnalysisState(
        status=AnalysisStatus.RISK_READY,
        base_analysis=analysis,
        analysis=analysis,
        risks=parse_risk_assessment(risk_json()),
    )


def test_submit_image_runs_full_chain(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    provider.queue(
        GenerateResponse(
            text=f"```json\n{nutrition_json()}\n```",
            citations=[
                Citation(uri="https://usda.example/chicken", title="USDA"),
                Citation(uri="https://untitled.example"),
            ],
        ),
        risk_json(4),
    )

    state = asyncio.run(orchestrator.submit_image(JPEG))

    assert state.status is AnalysisStatus.RISK_READY
    assert state.error is None
    assert state.analysis is not None
    assert state.analysis.nutritional_info.food_name == "Chicken salad"
    assert [source.title for source in state.analysis.sources] == ["USDA"]
    assert state.base_analysis == state.analysis
    assert state.risks is not None
    assert state.risks.diabetes.score == 4
    assert state.portion_multiplier == 1.0

    nutrition_request, risk_request = provider.requests
    assert nutrition_request.model == "analysis-model"
    assert nutrition_request.search_grounding is True
    assert nutrition_request.response_schema is None
    assert nutrition_request.parts[1] == InlineImage(data=JPEG, mime_type="image/jpeg")
    assert risk_request.model == "risk-model"
    assert risk_request.search_grounding is False
    assert risk_request.response_schema == HEALTH_RISK_SCHEMA
    assert "Chicken salad" in str(risk_request.parts[0])


def test_submit_image_uses_given_mime_type(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    provider.queue(nutrition_json(), risk_json())

    asyncio.run(orchestrator.submit_image(b"raw", "image/heic"))

    image = provider.requests[0].parts[1]
    assert isinstance(image, InlineImage)
    assert image.mime_type == "image/heic"


def test_submit_image_rejects_empty_image(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    with pytest.raises(InvalidArgumentError):
        asyncio.run(orchestrator.submit_image(b""))

    assert orchestrator.generation == 0
    assert provider.requests == []


def test_analysis_failure_sets_error(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    provider.queue("I cannot tell what this is.")

    state = asyncio.run(orchestrator.submit_image(JPEG))

    assert state.status is AnalysisStatus.FAILED
    assert state.error == ANALYSIS_FAILED_MESSAGE
    assert state.analysis is None
    assert state.image is not None
    assert len(provider.requests) == 1


def test_empty_analysis_response_fails(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    provider.queue("   ")

    state = asyncio.run(orchestrator.submit_image(JPEG))

    assert state.status is AnalysisStatus.FAILED
    assert state.error == ANALYSIS_FAILED_MESSAGE


def test_risk_failure_keeps_nutrition(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    provider.queue(nutrition_json(), TransportError("timeout"))

    state = asyncio.run(orchestrator.submit_image(JPEG))

    assert state.status is AnalysisStatus.FAILED
    assert state.error == RISK_FAILED_MESSAGE
    assert state.analysis is not None
    assert state.analysis.nutritional_info.calories == 200
    assert state.risks is None


def test_supplements_requested_when_enabled(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    provider.queue(nutrition_json(), risk_json(), supplements_json())

    state = asyncio.run(orchestrator.submit_image(JPEG, include_supplements=True))

    assert state.status is AnalysisStatus.SUPPLEMENTS_READY
    assert [suggestion.name for suggestion in state.supplements] == ["Fiber"]
    assert provider.requests[2].response_schema == SUPPLEMENT_SCHEMA


def test_supplement_failure_does_not_fail_analysis(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    provider.queue(nutrition_json(), risk_json(), "not json")

    state = asyncio.run(orchestrator.submit_image(JPEG, include_supplements=True))

    assert state.status is AnalysisStatus.RISK_READY
    assert state.error is None
    assert state.risks is not None
    assert state.supplements == []
    assert state.supplement_error == SUPPLEMENTS_FAILED_MESSAGE


def test_correct_name_reanalyzes_same_image(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    provider.queue(
        nutrition_json(),
        risk_json(),
        nutrition_json(foodName="Caesar salad"),
        risk_json(),
    )

    async def scenario() -> AnalysisState:
        await orchestrator.submit_image(JPEG)
        return await orchestrator.correct_name("  Caesar salad ")

    state = asyncio.run(scenario())

    request = provider.requests[2]
    assert '"Caesar salad"' in str(request.parts[0])
    assert request.parts[1] == provider.requests[0].parts[1]
    assert state.analysis is not None
    assert state.analysis.nutritional_info.food_name == "Caesar salad"
    assert state.status is AnalysisStatus.RISK_READY


def test_correct_name_repeats_request_for_same_name(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    provider.queue(nutrition_json(), risk_json())
    for _ in range(2):
        provider.queue(nutrition_json(foodName="Pho"), risk_json())

    async def scenario() -> None:
        await orchestrator.submit_image(JPEG)
        await orchestrator.correct_name("Pho")
        await orchestrator.correct_name("Pho")

    asyncio.run(scenario())

    assert len(provider.requests) == 6


def test_correct_name_requires_image(orchestrator: AnalysisOrchestrator) -> None:
    with pytest.raises(InvalidArgumentError):
        asyncio.run(orchestrator.correct_name("Pho"))


def test_correct_name_requires_name(orchestrator: AnalysisOrchestrator) -> None:
    orchestrator.state = _ready_state()

    with pytest.raises(InvalidArgumentError):
        asyncio.run(orchestrator.correct_name("   "))


def test_change_portion_scales_and_refreshes_risks(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    orchestrator.state = _ready_state()
    provider.queue(risk_json(6))

    state = asyncio.run(orchestrator.change_portion(2))

    assert state.portion_multiplier == 2
    assert state.analysis is not None
    assert state.analysis.nutritional_info.calories == 400
    assert state.base_analysis is not None
    assert state.base_analysis.nutritional_info.calories == 200
    assert state.risks is not None
    assert state.risks.hypertension.score == 6
    assert '"calories": 400' in str(provider.requests[0].parts[0])


def test_change_portion_risk_failure(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    orchestrator.state = _ready_state()
    provider.queue(TransportError("offline"))

    state = asyncio.run(orchestrator.change_portion(0.5))

    assert state.status is AnalysisStatus.FAILED
    assert state.error == RISK_FAILED_MESSAGE
    assert state.risks is None
    assert state.analysis is not None
    assert state.analysis.nutritional_info.calories == 100


@pytest.mark.parametrize("multiplier", [0, -1, float("nan"), float("inf")])
def test_change_portion_rejects_invalid_multiplier(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider, multiplier: float
) -> None:
    orchestrator.state = _ready_state()
    before = orchestrator.state.analysis

    with pytest.raises(InvalidArgumentError):
        asyncio.run(orchestrator.change_portion(multiplier))

    assert orchestrator.state.analysis == before
    assert orchestrator.state.portion_multiplier == 1.0
    assert orchestrator.generation == 0
    assert provider.requests == []


def test_change_portion_requires_analysis(orchestrator: AnalysisOrchestrator) -> None:
    with pytest.raises(InvalidArgumentError):
        asyncio.run(orchestrator.change_portion(2))


def test_rescale_portion_returns_scaled_values(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    orchestrator.state = _ready_state()
    provider.queue(risk_json(9))

    scaled, risks = asyncio.run(orchestrator.rescale_portion(1.5))

    assert scaled.calories == 300
    assert risks.cholesterol.score == 9
    assert orchestrator.state.risks == risks


def test_rescale_portion_propagates_failure(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    orchestrator.state = _ready_state()
    provider.queue("")

    with pytest.raises(EmptyResponseError):
        asyncio.run(orchestrator.rescale_portion(1.5))


@pytest.mark.parametrize("first_to_finish", [0, 1])
def test_newest_portion_change_wins(first_to_finish: int) -> None:
    provider = GatedAIProvider()
    orchestrator = AnalysisOrchestrator(
        provider=provider, analysis_model="analysis-model", risk_model="risk-model"
    )
    orchestrator.state = _ready_state()
    replies = [risk_json(2), risk_json(8)]

    async def scenario() -> None:
        older = asyncio.create_task(orchestrator.change_portion(1.5))
        await asyncio.sleep(0)
        newer = asyncio.create_task(orchestrator.change_portion(2))
        await asyncio.sleep(0)
        tasks = [older, newer]
        for index in (first_to_finish, 1 - first_to_finish):
            provider.gates[index].set_result(GenerateResponse(text=replies[index]))
            await tasks[index]

    asyncio.run(scenario())

    state = orchestrator.state
    assert len(provider.requests) == 2
    assert state.portion_multiplier == 2
    assert state.analysis is not None
    assert state.analysis.nutritional_info.calories == 400
    assert state.risks is not None
    assert state.risks.diabetes.score == 8
    assert state.status is AnalysisStatus.RISK_READY


def test_reset_discards_in_flight_result() -> None:
    provider = GatedAIProvider()
    orchestrator = AnalysisOrchestrator(
        provider=provider, analysis_model="analysis-model", risk_model="risk-model"
    )

    async def scenario() -> None:
        task = asyncio.create_task(orchestrator.submit_image(JPEG))
        await asyncio.sleep(0)
        orchestrator.reset()
        provider.gates[0].set_result(GenerateResponse(text=nutrition_json()))
        await task

    asyncio.run(scenario())

    assert orchestrator.state == AnalysisState()
    assert len(provider.requests) == 1


def test_save_builds_history_entry(orchestrator: AnalysisOrchestrator) -> None:
    state = _ready_state()
    assert state.analysis is not None and state.risks is not None

    entry = orchestrator.save(state.analysis, state.risks, 1.5)

    assert entry.portion_multiplier == 1.5
    assert entry.analysis == state.analysis
    assert entry.timestamp.tzinfo is not None


def test_save_rejects_non_positive_multiplier(
    orchestrator: AnalysisOrchestrator,
) -> None:
    state = _ready_state()
    assert state.analysis is not None and state.risks is not None

    with pytest.raises(InvalidArgumentError):
        orchestrator.save(state.analysis, state.risks, 0)


def test_save_current_resets_slot(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    orchestrator.state = _ready_state()
    provider.queue(risk_json())
    asyncio.run(orchestrator.change_portion(2))

    entry = orchestrator.save_current()

    assert entry.portion_multiplier == 2
    assert entry.analysis.nutritional_info.calories == 400
    assert orchestrator.state.status is AnalysisStatus.IDLE
    assert orchestrator.state.analysis is None


def test_save_current_requires_risks(orchestrator: AnalysisOrchestrator) -> None:
    orchestrator.state = _ready_state()
    orchestrator.state.risks = None

    with pytest.raises(InvalidArgumentError):
        orchestrator.save_current()


def test_detect_mime_type() -> None:
    assert detect_mime_type(b"\x89PNG\r\n\x1a\nrest") == "image/png"
    assert detect_mime_type(b"RIFF\x00\x00\x00\x00WEBPVP8") == "image/webp"
    assert detect_mime_type(JPEG) == "image/jpeg"
    assert detect_mime_type(b"unknown") == "image/jpeg"


def test_failed_rescale_marks_slot_failed(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    orchestrator.state = _ready_state()
    provider.queue(TransportError("offline"))

    with pytest.raises(TransportError):
        asyncio.run(orchestrator.rescale_portion(2))

    state = orchestrator.state
    assert state.status is AnalysisStatus.FAILED
    assert state.error == RISK_FAILED_MESSAGE
    assert state.analysis is not None
    assert state.analysis.nutritional_info.calories == 400


def test_failed_analyze_marks_slot_failed(
    orchestrator: AnalysisOrchestrator, provider: FakeAIProvider
) -> None:
    provider.queue(TransportError("offline"))

    with pytest.raises(TransportError):
        asyncio.run(orchestrator.analyze(JPEG))

    assert orchestrator.state.status is AnalysisStatus.FAILED
    assert orchestrator.state.error == ANALYSIS_FAILED_MESSAGE
    assert orchestrator.state.image is not None

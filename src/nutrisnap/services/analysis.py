"""Image analysis pipeline: nutrition, risk assessment and supplements.

Each chain (image analysis, portion change) captures a generation token when
it starts. Results are committed to the state only while that token is still
the newest one, so a slow, superseded request never overwrites a newer
result.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from nutrisnap.domain.analysis import (
    FoodAnalysis,
    HealthRiskAssessment,
    HistoryEntry,
    NutritionalInfo,
    SupplementSuggestion,
)
from nutrisnap.domain.errors import InvalidArgumentError, NutriSnapError
from nutrisnap.services.ai import AIProvider, GenerateRequest, InlineImage
from nutrisnap.services.parser import (
    parse_nutrition,
    parse_risk_assessment,
    parse_sources,
    parse_supplements,
)

_logger = logging.getLogger(__name__)

ANALYSIS_FAILED_MESSAGE = (
    "Failed to analyze food image. Please try again with a clearer image."
)
RISK_FAILED_MESSAGE = (
    "Failed to assess health risks. The nutritional data might be incomplete."
)
SUPPLEMENTS_FAILED_MESSAGE = "Could not load supplement suggestions right now."

_NUTRITION_JSON_SHAPE = """{
  "foodName": "string",
  "estimatedWeight": "number (grams)",
  "calories": "number",
  "protein": "number (grams)",
  "carbohydrates": {
    "total": "number (grams)",
    "sugar": "number (grams)"
  },
  "fat": {
    "total": "number (grams)",
    "saturated": "number (grams)"
  },
  "sodium": "number (milligrams)",
  "cholesterol": "number (milligrams)"
}"""

_NUTRITION_BASE_PROMPT = (
    "You are a nutritional expert. Ground your response using web search for "
    "accuracy. Respond ONLY with a valid JSON object. Do not include any other "
    "text or markdown formatting. The JSON object must have the following "
    f"structure:\n{_NUTRITION_JSON_SHAPE}"
)

_RISK_PROMPT = (
    "You are an AI health assistant specializing in dietary risk assessment. "
    "Based on the following nutritional information, evaluate the potential "
    "risk for an individual with a predisposition to diabetes, hypertension, "
    "and high cholesterol. Provide a risk score from 1 (very low risk) to 10 "
    "(very high risk) for each condition, along with a brief, clear "
    "explanation for your assessment. Respond ONLY with a JSON object that "
    "conforms to the provided schema.\n\nNutritional Information:\n{nutrition}"
)

_SUPPLEMENT_PROMPT = (
    "You are a careful nutrition assistant. Given the following dietary risk "
    "assessment for a single meal, suggest up to three common dietary "
    "supplements that may help offset the highest risks. Keep each reason "
    "under 25 words and avoid medical claims. Respond ONLY with a JSON object "
    "that conforms to the provided schema.\n\nRisk assessment:\n{risks}"
)


def _risk_schema(condition: str) -> dict[str, object]:
    return {
        "type": "object",
        "properties": {
            "score": {
                "type": "number",
                "description": (
                    f"Risk score from 1 (low) to 10 (high) for {condition}."
                ),
            },
            "reasoning": {
                "type": "string",
                "description": f"Brief explanation for the {condition} risk score.",
            },
        },
        "required": ["score", "reasoning"],
        "additionalProperties": False,
    }


HEALTH_RISK_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "diabetes": _risk_schema("diabetes"),
        "hypertension": _risk_schema("hypertension"),
        "cholesterol": _risk_schema("high cholesterol"),
    },
    "required": ["diabetes", "hypertension", "cholesterol"],
    "additionalProperties": False,
}

SUPPLEMENT_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "suggestions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "reason": {"type": "string"},
                },
                "required": ["name", "reason"],
                "additionalProperties": False,
            },
        }
    },
    "required": ["suggestions"],
    "additionalProperties": False,
}


class AnalysisStatus(str, Enum):
    """Lifecycle of the active analysis slot."""

    IDLE = "IDLE"
    IMAGE_SUBMITTED = "IMAGE_SUBMITTED"
    NUTRITION_READY = "NUTRITION_READY"
    RISK_READY = "RISK_READY"
    SUPPLEMENTS_READY = "SUPPLEMENTS_READY"
    FAILED = "FAILED"


@dataclass
class AnalysisState:
    """The active analysis slot.

    ``base_analysis`` is the unscaled AI result; ``analysis`` is the
    portion-adjusted view derived from it.
    """

    status: AnalysisStatus = AnalysisStatus.IDLE
    image: InlineImage | None = None
    base_analysis: FoodAnalysis | None = None
    analysis: FoodAnalysis | None = None
    risks: HealthRiskAssessment | None = None
    supplements: list[SupplementSuggestion] = field(default_factory=list)
    portion_multiplier: float = 1.0
    error: str | None = None
    supplement_error: str | None = None


@dataclass
class AnalysisOrchestrator:
    """Sequences the AI calls behind a meal analysis."""

    provider: AIProvider
    analysis_model: str
    risk_model: str
    reasoning_effort: str | None = None
    state: AnalysisState = field(default_factory=AnalysisState)
    _generation: int = field(default=0, init=False, repr=False)

    @property
    def generation(self) -> int:
        """Token of the newest chain started on this orchestrator."""
        return self._generation

    async def analyze(
        self,
        image_bytes: bytes,
        mime_type: str | None = None,
        corrected_name: str | None = None,
    ) -> FoodAnalysis:
        """Analyze an image and make the result the new base analysis."""
        image = _inline_image(image_bytes, mime_type)
        token = self._begin()
        return await self._analyze(token, image, corrected_name)

    async def assess_risk(self, info: NutritionalInfo) -> HealthRiskAssessment:
        """Score diabetes, hypertension and cholesterol risk for the nutrients."""
        prompt = _RISK_PROMPT.format(
            nutrition=info.model_dump_json(by_alias=True, indent=2)
        )
        response = await self.provider.generate_content(
            GenerateRequest(
                model=self.risk_model,
                parts=[prompt],
                response_schema=HEALTH_RISK_SCHEMA,
                schema_name="health_risk_assessment",
                reasoning_effort=self.reasoning_effort,
            )
        )
        return parse_risk_assessment(response.text)

    async def suggest_supplements(
        self, risks: HealthRiskAssessment
    ) -> list[SupplementSuggestion]:
        """Suggest supplements for the given risk profile."""
        prompt = _SUPPLEMENT_PROMPT.format(
            risks=risks.model_dump_json(by_alias=True, indent=2)
        )
        response = await self.provider.generate_content(
            GenerateRequest(
                model=self.analysis_model,
                parts=[prompt],
                response_schema=SUPPLEMENT_SCHEMA,
                schema_name="supplement_suggestions",
            )
        )
        return parse_supplements(response.text)

    async def rescale_portion(
        self, multiplier: float
    ) -> tuple[NutritionalInfo, HealthRiskAssessment]:
        """Scale the base analysis and re-assess risk for the new amounts."""
        token, scaled = self._apply_portion(multiplier)
        risks = await self._assess(token, scaled)
        self._commit_risks(token, risks)
        return scaled, risks

    def save(
        self,
        analysis: FoodAnalysis,
        risks: HealthRiskAssessment,
        multiplier: float,
    ) -> HistoryEntry:
        """Build a history snapshot stamped with the current time."""
        if multiplier <= 0:
            raise InvalidArgumentError("Portion multiplier must be positive.")
        return HistoryEntry(
            analysis=analysis,
            risks=risks,
            timestamp=datetime.now(tz=UTC),
            portion_multiplier=multiplier,
        )

    async def submit_image(
        self,
        image_bytes: bytes,
        mime_type: str | None = None,
        *,
        include_supplements: bool = False,
    ) -> AnalysisState:
        """Run the full chain for a new image, recording failures in the state."""
        image = _inline_image(image_bytes, mime_type)
        token = self._begin()
        self.state = AnalysisState(status=AnalysisStatus.IMAGE_SUBMITTED, image=image)
        await self._run_analysis_chain(token, image, None, include_supplements)
        return self.state

    async def correct_name(
        self, corrected_name: str, *, include_supplements: bool = False
    ) -> AnalysisState:
        """Re-analyze the current image as the food the user named."""
        name = corrected_name.strip()
        if not name:
            raise InvalidArgumentError("A food name is required.")
        image = self.state.image
        if image is None:
            raise InvalidArgumentError(
                "Original image not found. Please start over by selecting the "
                "image again."
            )
        token = self._begin()
        await self._run_analysis_chain(token, image, name, include_supplements)
        return self.state

    async def change_portion(
        self, multiplier: float, *, include_supplements: bool = False
    ) -> AnalysisState:
        """Apply a portion multiplier and refresh risks, recording failures."""
        token, scaled = self._apply_portion(multiplier)
        await self._run_risk_chain(token, scaled, include_supplements)
        return self.state

    def save_current(self) -> HistoryEntry:
        """Snapshot the current analysis and return the slot to idle."""
        analysis = self.state.analysis
        risks = self.state.risks
        if analysis is None or risks is None:
            raise InvalidArgumentError("Nothing to save yet.")
        entry = self.save(analysis, risks, self.state.portion_multiplier)
        self.reset()
        return entry

    def reset(self) -> None:
        """Clear the slot and abandon any in-flight chain."""
        self._begin()
        self.state = AnalysisState()

    async def _analyze(
        self, token: int, image: InlineImage, corrected_name: str | None
    ) -> FoodAnalysis:
        self.state.image = image
        self.state.status = AnalysisStatus.IMAGE_SUBMITTED
        self.state.error = None
        try:
            response = await self.provider.generate_content(
                GenerateRequest(
                    model=self.analysis_model,
                    parts=[_nutrition_prompt(corrected_name), image],
                    search_grounding=True,
                )
            )
            analysis = FoodAnalysis(
                nutritional_info=parse_nutrition(response.text),
                sources=parse_sources(response.citations),
            )
        except NutriSnapError as exc:
            self._fail(token, exc, ANALYSIS_FAILED_MESSAGE)
            raise
        if self._is_current(token):
            self.state.base_analysis = analysis
            self.state.analysis = analysis
            self.state.portion_multiplier = 1.0
            self.state.risks = None
            self.state.supplements = []
            self.state.supplement_error = None
            self.state.status = AnalysisStatus.NUTRITION_READY
        return analysis

    async def _run_analysis_chain(
        self,
        token: int,
        image: InlineImage,
        corrected_name: str | None,
        include_supplements: bool,
    ) -> None:
        try:
            analysis = await self._analyze(token, image, corrected_name)
        except NutriSnapError:
            return
        if not self._is_current(token):
            return
        await self._run_risk_chain(
            token, analysis.nutritional_info, include_supplements
        )

    async def _assess(self, token: int, info: NutritionalInfo) -> HealthRiskAssessment:
        try:
            return await self.assess_risk(info)
        except NutriSnapError as exc:
            self._fail(token, exc, RISK_FAILED_MESSAGE)
            raise

    async def _run_risk_chain(
        self, token: int, info: NutritionalInfo, include_supplements: bool
    ) -> None:
        try:
            risks = await self._assess(token, info)
        except NutriSnapError:
            return
        if not self._commit_risks(token, risks) or not include_supplements:
            return
        try:
            supplements = await self.suggest_supplements(risks)
        except NutriSnapError as exc:
            if self._is_current(token):
                _logger.warning("Supplement suggestions failed: %s", exc)
                self.state.supplement_error = SUPPLEMENTS_FAILED_MESSAGE
            return
        if self._is_current(token):
            self.state.supplements = supplements
            self.state.status = AnalysisStatus.SUPPLEMENTS_READY

    def _apply_portion(self, multiplier: float) -> tuple[int, NutritionalInfo]:
        if not math.isfinite(multiplier) or multiplier <= 0:
            raise InvalidArgumentError("Portion multiplier must be positive.")
        base = self.state.base_analysis
        if base is None:
            raise InvalidArgumentError("No analysis to adjust yet.")
        token = self._begin()
        scaled = base.nutritional_info.scaled(multiplier)
        self.state.analysis = base.with_nutrition(scaled)
        self.state.portion_multiplier = multiplier
        self.state.risks = None
        self.state.supplements = []
        self.state.error = None
        self.state.supplement_error = None
        self.state.status = AnalysisStatus.NUTRITION_READY
        return token, scaled

    def _commit_risks(self, token: int, risks: HealthRiskAssessment) -> bool:
        if not self._is_current(token):
            return False
        self.state.risks = risks
        self.state.status = AnalysisStatus.RISK_READY
        return True

    def _fail(self, token: int, exc: Exception, message: str) -> None:
        _logger.warning("Analysis step failed: %s", exc)
        if self._is_current(token):
            self.state.status = AnalysisStatus.FAILED
            self.state.error = message

    def _begin(self) -> int:
        self._generation += 1
        return self._generation

    def _is_current(self, token: int) -> bool:
        if token == self._generation:
            return True
        _logger.debug(
            "Discarding stale result (token=%s, current=%s)", token, self._generation
        )
        return False


def _nutrition_prompt(corrected_name: str | None) -> str:
    if corrected_name:
        instruction = (
            "The user has specified that the food in the image is "
            f'"{corrected_name}". '
            "This name might be in a local language; do your best to identify it. "
            "Please analyze the image based on this identification. Estimate the "
            "portion size's weight in grams and provide a detailed nutritional "
            f'analysis for "{corrected_name}". The "foodName" in your response '
            f'should be "{corrected_name}".'
        )
    else:
        instruction = (
            "Analyze the food in this image. Identify the food item(s), estimate "
            "its weight in grams, and provide a detailed nutritional analysis for "
            "that portion size."
        )
    return f"{instruction}\n{_NUTRITION_BASE_PROMPT}"


def _inline_image(image_bytes: bytes, mime_type: str | None) -> InlineImage:
    if not image_bytes:
        raise InvalidArgumentError("An image is required.")
    return InlineImage(
        data=image_bytes, mime_type=mime_type or detect_mime_type(image_bytes)
    )


def detect_mime_type(image_bytes: bytes) -> str:
    """Infer a basic image MIME type from file signatures."""
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


"""Nutrition analysis and health risk models.

Field aliases are camelCase because the same shapes are used as the JSON
contract with the AI service and as the persisted history format.
"""

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class Carbohydrates(_Model):
    """Carbohydrate breakdown in grams."""

    total: float = Field(ge=0)
    sugar: float = Field(ge=0)

    @model_validator(mode="after")
    def _sugar_within_total(self) -> "Carbohydrates":
        if self.sugar > self.total:
            raise ValueError("sugar cannot exceed total carbohydrates")
        return self


class Fat(_Model):
    """Fat breakdown in grams."""

    total: float = Field(ge=0)
    saturated: float = Field(ge=0)

    @model_validator(mode="after")
    def _saturated_within_total(self) -> "Fat":
        if self.saturated > self.total:
            raise ValueError("saturated fat cannot exceed total fat")
        return self


class NutritionalInfo(_Model):
    """Nutrients for one estimated portion of a food."""

    food_name: str
    estimated_weight: float = Field(ge=0, description="grams")
    calories: float = Field(ge=0)
    protein: float = Field(ge=0, description="grams")
    carbohydrates: Carbohydrates
    fat: Fat
    sodium: float = Field(ge=0, description="milligrams")
    cholesterol: float = Field(ge=0, description="milligrams")

    def scaled(self, multiplier: float) -> "NutritionalInfo":
        """Return a new instance with every quantity multiplied."""
        return NutritionalInfo(
            food_name=self.food_name,
            estimated_weight=self.estimated_weight * multiplier,
            calories=self.calories * multiplier,
            protein=self.protein * multiplier,
            carbohydrates=Carbohydrates(
                total=self.carbohydrates.total * multiplier,
                sugar=self.carbohydrates.sugar * multiplier,
            ),
            fat=Fat(
                total=self.fat.total * multiplier,
                saturated=self.fat.saturated * multiplier,
            ),
            sodium=self.sodium * multiplier,
            cholesterol=self.cholesterol * multiplier,
        )


class GroundingSource(_Model):
    """Web citation returned alongside a grounded answer."""

    uri: str
    title: str


class FoodAnalysis(_Model):
    """Result of one image analysis call."""

    nutritional_info: NutritionalInfo
    sources: list[GroundingSource] = Field(default_factory=list)

    def with_nutrition(self, info: NutritionalInfo) -> "FoodAnalysis":
        """Return a copy carrying different nutrients and the same sources."""
        return FoodAnalysis(nutritional_info=info, sources=self.sources)


class Risk(_Model):
    """Risk score (1 low to 10 high) with a short explanation."""

    score: float
    reasoning: str


class HealthRiskAssessment(_Model):
    """Risk for the three tracked conditions."""

    diabetes: Risk
    hypertension: Risk
    cholesterol: Risk


class SupplementSuggestion(_Model):
    """A supplement the user might consider given their risks."""

    name: str
    reason: str


class HistoryEntry(_Model):
    """Snapshot of a saved analysis."""

    analysis: FoodAnalysis
    risks: HealthRiskAssessment
    timestamp: AwareDatetime
    portion_multiplier: float = Field(gt=0)

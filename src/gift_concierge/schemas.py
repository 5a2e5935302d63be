"""Pydantic schemas validating Reasoning Port replies at the stage boundary."""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator

from gift_concierge.errors import ReasoningError


def _clean_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    out: list[str] = []
    seen: set[str] = set()
    for item in value:
        if not isinstance(item, str):
            continue
        cleaned = item.strip()
        if not cleaned or cleaned.casefold() in seen:
            continue
        seen.add(cleaned.casefold())
        out.append(cleaned)
    return out


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.replace("$", "").replace(",", "").strip()
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


StrList = Annotated[list[str], BeforeValidator(_clean_str_list)]
OptionalText = Annotated[str | None, BeforeValidator(_optional_text)]
OptionalNumber = Annotated[float | None, BeforeValidator(_optional_number)]


def enum_or_none(value: str | None, allowed: set[str]) -> str | None:
    if value is None:
        return None
    key = value.strip().lower().replace(" ", "_")
    return key if key in allowed else None


class _Reply(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# --------------------------------------------------------------------------- listener


class RecipientReply(_Reply):
    name: OptionalText = None
    relationship_type: OptionalText = Field(default=None, alias="relationshipType")
    age: int | None = None
    gender: OptionalText = None

    @field_validator("age", mode="before")
    @classmethod
    def _lenient_age(cls, value: Any) -> int | None:
        number = _optional_number(value)
        if number is None or number <= 0 or number > 130:
            return None
        return int(number)


class OccasionReply(_Reply):
    name: OptionalText = None
    date: OptionalText = None
    urgency: OptionalText = None

    @field_validator("urgency")
    @classmethod
    def _urgency(cls, value: str | None) -> str | None:
        return enum_or_none(value, {"immediate", "planned", "future"})


class BudgetReply(_Reply):
    min: OptionalNumber = None
    max: OptionalNumber = None
    flexibility: OptionalText = None

    @field_validator("flexibility")
    @classmethod
    def _flexibility(cls, value: str | None) -> str | None:
        return enum_or_none(value, {"strict", "flexible", "unspecified"})


class ListenerReply(_Reply):
    recipient: RecipientReply | None = None
    occasion: OccasionReply | None = None
    budget: BudgetReply | None = None
    interests: StrList = Field(default_factory=list)
    values: StrList = Field(default_factory=list)
    constraints: StrList = Field(default_factory=list)
    emotional_tone: OptionalText = Field(default=None, alias="emotionalTone")
    confidence_level: OptionalText = Field(default=None, alias="confidenceLevel")
    gift_significance: OptionalText = Field(default=None, alias="giftSignificance")

    @field_validator("emotional_tone")
    @classmethod
    def _tone(cls, value: str | None) -> str | None:
        return enum_or_none(value, {"excited", "stressed", "casual", "formal", "urgent"})

    @field_validator("confidence_level")
    @classmethod
    def _confidence_level(cls, value: str | None) -> str | None:
        return enum_or_none(value, {"certain", "exploring", "confused"})

    @field_validator("gift_significance")
    @classmethod
    def _significance(cls, value: str | None) -> str | None:
        return enum_or_none(value, {"major", "moderate", "small_gesture"})


# --------------------------------------------------------------------------- relationship


class PriceRangeReply(_Reply):
    min: OptionalNumber = None
    max: OptionalNumber = None


class SocialNormsReply(_Reply):
    appropriate_price_range: PriceRangeReply | None = Field(default=None, alias="appropriatePriceRange")
    formality_level: OptionalText = Field(default=None, alias="formalityLevel")
    personal_vs_generic: OptionalText = Field(default=None, alias="personalVsGeneric")


class RelationshipAnalysisReply(_Reply):
    type: OptionalText = None
    closeness: OptionalText = None
    duration: OptionalText = None
    social_norms: SocialNormsReply = Field(default_factory=SocialNormsReply, alias="socialNorms")
    risk_tolerance: OptionalText = Field(default=None, alias="riskTolerance")


class CalibrationReply(_Reply):
    adjusted_budget: PriceRangeReply | None = Field(default=None, alias="adjustedBudget")
    recommended_archetypes: StrList = Field(default_factory=list, alias="recommendedArchetypes")
    avoid_archetypes: StrList = Field(default_factory=list, alias="avoidArchetypes")
    personalization_level: OptionalText = Field(default=None, alias="personalizationLevel")


class RelationshipReply(_Reply):
    relationship_analysis: RelationshipAnalysisReply = Field(alias="relationshipAnalysis")
    calibration: CalibrationReply = Field(default_factory=CalibrationReply)


# --------------------------------------------------------------------------- meaning


class PersonalRelevanceReply(_Reply):
    connects_to_interests: StrList = Field(default_factory=list, alias="connectsToInterests")
    addresses_needs: StrList = Field(default_factory=list, alias="addressesNeeds")
    celebrates_personality: OptionalText = Field(default=None, alias="celebratesPersonality")


class MeaningFrameworkReply(_Reply):
    gift_archetype: str = Field(alias="giftArchetype", min_length=1)
    emotional_message: str = Field(default="", alias="emotionalMessage")
    core_values: StrList = Field(default_factory=list, alias="coreValues")
    personal_relevance: PersonalRelevanceReply = Field(
        default_factory=PersonalRelevanceReply, alias="personalRelevance"
    )


class ResonanceReply(_Reply):
    functional_needs: StrList = Field(default_factory=list, alias="functionalNeeds")
    aspirational_needs: StrList = Field(default_factory=list, alias="aspirationalNeeds")
    emotional_needs: StrList = Field(default_factory=list, alias="emotionalNeeds")
    social_needs: StrList = Field(default_factory=list, alias="socialNeeds")


class DiscoveryHintsReply(_Reply):
    semantic_queries: StrList = Field(default_factory=list, alias="semanticQueries")
    interest_pathways: StrList = Field(default_factory=list, alias="interestPathways")
    archetype_filters: StrList = Field(default_factory=list, alias="archetypeFilters")


class MeaningReply(_Reply):
    meaning_framework: MeaningFrameworkReply = Field(alias="meaningFramework")
    resonance_criteria: ResonanceReply = Field(default_factory=ResonanceReply, alias="resonanceCriteria")
    discovery_hints: DiscoveryHintsReply = Field(default_factory=DiscoveryHintsReply, alias="discoveryHints")


# --------------------------------------------------------------------------- storyteller / presenter


class StoryElementsReply(_Reply):
    connection_to_recipient: str = Field(default="", alias="connectionToRecipient")
    emotional_resonance: str = Field(default="", alias="emotionalResonance")
    practical_value: OptionalText = Field(default=None, alias="practicalValue")


class StoryReply(_Reply):
    reasoning: str = Field(min_length=1)
    story_elements: StoryElementsReply = Field(default_factory=StoryElementsReply, alias="storyElements")
    tone: OptionalText = None

    @field_validator("tone")
    @classmethod
    def _tone(cls, value: str | None) -> str | None:
        return enum_or_none(value, {"warm", "enthusiastic", "thoughtful", "practical"})


class FramingReply(_Reply):
    intro: str = Field(min_length=1)
    outro: str = Field(min_length=1)


def parse_reply(model: type[_Reply], raw: Any) -> Any:
    if not isinstance(raw, dict):
        raise ReasoningError("malformed", f"{model.__name__} expected a JSON object.")
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise ReasoningError("malformed", f"{model.__name__} did not match: {exc.error_count()} error(s)") from exc

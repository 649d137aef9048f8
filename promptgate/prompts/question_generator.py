from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from promptgate.services.context_builder import ContextLayer, create_standard_layers
from promptgate.services.feature_gate import FEATURE_QUESTION_GENERATION
from promptgate.services.schemas import PromptDefinition


PROMPT_ID = "question_generator"
PROMPT_VERSION = 3

SYSTEM_INSTRUCTIONS = (
    "You are an organizational psychologist generating workplace survey and wellness questions. "
    "Return only JSON matching the output schema: an object with a non-empty \"questions\" array. "
    "Every question needs English and Arabic text, a type, complexity, tone, a short explanation, "
    "a confidence_score between 0 and 1, and bias_flag/ambiguity_flag booleans. "
    "Never include personal data, diagnoses, or leading wording."
)

_SURVEY_TEMPLATE = (
    "Mode: survey.\n"
    "Generate {count} {complexity} questions in a {tone} tone{type_clause}.\n"
    "Questions measure organizational constructs and must map to the allowed categories."
)

_WELLNESS_TEMPLATE = (
    "Mode: wellness check-in.\n"
    "Generate {count} {complexity} daily check-in questions in a {tone} tone{type_clause}.\n"
    "Questions must be gentle, non-clinical, and suitable for the mood levels: {moods}."
)

_LANGUAGE_NOTES = {
    "en": "Primary language: English.",
    "ar": "Primary language: Arabic.",
    "both": "Provide equally polished English and Arabic text.",
}


class QuestionGeneratorVariables(BaseModel):
    model_config = ConfigDict(extra="forbid")

    question_count: int = Field(ge=1, le=50)
    complexity: Literal["simple", "moderate", "advanced"]
    tone: str = Field(min_length=1)
    purpose: Literal["survey", "wellness"] = "survey"
    question_type: str | None = None
    accuracy_mode: Literal["standard", "high", "strict"] | None = None
    language: Literal["en", "ar", "both"] | None = None
    custom_prompt: str | None = None
    category_ids: list[str] = Field(default_factory=list)
    subcategory_ids: list[str] = Field(default_factory=list)
    framework_summaries: list[str] = Field(default_factory=list)
    document_summaries: list[str] = Field(default_factory=list)
    mood_levels: list[str] = Field(default_factory=list)
    period_id: str | None = None
    ai_model: str | None = None

    @model_validator(mode="after")
    def _mood_levels_only_for_wellness(self) -> "QuestionGeneratorVariables":
        if self.mood_levels and self.purpose != "wellness":
            raise ValueError("mood_levels are only accepted for wellness generation")
        return self


class QuestionOption(BaseModel):
    text: str
    text_ar: str


class GeneratedQuestion(BaseModel):
    question_text: str = Field(min_length=1)
    question_text_ar: str = Field(min_length=1)
    type: str
    complexity: str
    tone: str
    explanation: str
    confidence_score: float
    bias_flag: bool
    ambiguity_flag: bool
    options: list[QuestionOption] | None = None
    framework_reference: str | None = None
    psychological_construct: str | None = None
    category_id: str | None = None
    subcategory_id: str | None = None
    mood_levels: list[str] | None = None
    generation_period_id: str | None = None


class QuestionGeneratorOutput(BaseModel):
    success: Literal[True] = True
    questions: list[GeneratedQuestion] = Field(min_length=1)
    model: str
    used_fallback: bool = False


def _mode_template(variables: QuestionGeneratorVariables) -> str:
    type_clause = f" of type {variables.question_type}" if variables.question_type else ""
    if variables.purpose == "wellness":
        moods = ", ".join(variables.mood_levels) or "any"
        text = _WELLNESS_TEMPLATE.format(
            count=variables.question_count,
            complexity=variables.complexity,
            tone=variables.tone,
            type_clause=type_clause,
            moods=moods,
        )
    else:
        text = _SURVEY_TEMPLATE.format(
            count=variables.question_count,
            complexity=variables.complexity,
            tone=variables.tone,
            type_clause=type_clause,
        )
    if variables.language:
        text += "\n" + _LANGUAGE_NOTES[variables.language]
    if variables.accuracy_mode == "strict":
        text += "\nStrict mode: reject any question you cannot tie to an allowed category."
    return text


def _category_block(variables: QuestionGeneratorVariables) -> str:
    # Ids only; names and descriptions are resolved by the caller's UI.
    lines = []
    if variables.category_ids:
        lines.append("Allowed category_id values: " + ", ".join(variables.category_ids))
    if variables.subcategory_ids:
        lines.append("Allowed subcategory_id values: " + ", ".join(variables.subcategory_ids))
    return "\n".join(lines)


def _framework_block(variables: QuestionGeneratorVariables) -> str:
    if not variables.framework_summaries:
        return ""
    return "Reference frameworks:\n" + "\n".join(f"- {item}" for item in variables.framework_summaries)


def _document_block(variables: QuestionGeneratorVariables) -> str:
    if not variables.document_summaries:
        return ""
    return "Knowledge base excerpts:\n" + "\n".join(
        f"[{idx}] {item}" for idx, item in enumerate(variables.document_summaries, start=1)
    )


def build_question_layers(variables: QuestionGeneratorVariables) -> list[ContextLayer]:
    return create_standard_layers(
        system_instructions=SYSTEM_INSTRUCTIONS,
        mode_template=_mode_template(variables),
        category_block=_category_block(variables),
        framework_block=_framework_block(variables),
        document_block=_document_block(variables),
        custom_prompt=variables.custom_prompt or "",
    )


QUESTION_GENERATOR = PromptDefinition(
    id=PROMPT_ID,
    version=PROMPT_VERSION,
    feature=FEATURE_QUESTION_GENERATION,
    variables_schema=QuestionGeneratorVariables,
    output_schema=QuestionGeneratorOutput,
    build_layers=build_question_layers,
)

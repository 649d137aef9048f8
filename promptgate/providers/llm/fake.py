from __future__ import annotations

from typing import Any

from promptgate.providers.llm.base import ProviderResponse


_DEFAULT_QUESTION = {
    "question_text": "How supported do you feel by your team this week?",
    "question_text_ar": "ما مدى شعورك بدعم فريقك هذا الأسبوع؟",
    "type": "likert_5",
    "complexity": "simple",
    "tone": "supportive",
    "explanation": "Measures perceived peer support.",
    "confidence_score": 0.9,
    "bias_flag": False,
    "ambiguity_flag": False,
}


class FakeLLMProvider:
    name = "fake"

    def __init__(self, payload: dict[str, Any] | None = None, *, model: str = "fake-model") -> None:
        # Deterministic payload keeps tests stable without external calls.
        self._payload = payload
        self._model = model
        self.prompts: list[str] = []

    async def generate(self, prompt: str, *, model: str | None = None) -> ProviderResponse:
        self.prompts.append(prompt)
        resolved_model = model or self._model
        data = self._payload
        if data is None:
            data = {"success": True, "questions": [dict(_DEFAULT_QUESTION)], "model": resolved_model}
        return ProviderResponse(data=dict(data), provider=self.name, model=resolved_model)

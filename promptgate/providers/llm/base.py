from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class ProviderResponse:
    # Decoded JSON from the model (an object when well-formed) plus routing metadata.
    data: Any
    provider: str
    model: str
    used_fallback: bool = False


class LLMProvider(Protocol):
    name: str

    async def generate(self, prompt: str, *, model: str | None = None) -> ProviderResponse:
        ...

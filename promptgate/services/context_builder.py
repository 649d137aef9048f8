"""Compose prompt layers under a global character budget.

Layers are consumed in priority order (system instructions first, the untrusted
user directive last), so a later layer can only ever use what earlier layers left
behind. Prompt content is never logged; only layer names and lengths are.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging

from promptgate.core.config import get_settings
from promptgate.services.sanitizer import (
    sandbox_overhead_chars,
    sandbox_user_directive,
    sanitize_custom_prompt,
)


logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n[...truncated to budget...]"
LAYER_SEPARATOR = "\n\n"
# Prefer a word boundary only when it keeps at least this share of the cap.
WORD_BOUNDARY_RATIO = 0.8

LAYER_SYSTEM = "system"
LAYER_MODE = "mode"
LAYER_CATEGORIES = "categories"
LAYER_FRAMEWORKS = "frameworks"
LAYER_DOCUMENTS = "documents"
LAYER_CUSTOM_PROMPT = "custom_prompt"


@dataclass(frozen=True)
class ContextLayer:
    name: str
    content: str
    # 0 means "whatever remains of the global budget".
    max_chars: int = 0
    # Raw untrusted text, wrapped at build time so the wrapper always fits.
    sandboxed: bool = False


@dataclass(frozen=True)
class LayerReport:
    name: str
    chars: int
    trimmed: bool


@dataclass
class BuiltContext:
    text: str = ""
    total_chars: int = 0
    layers: list[LayerReport] = field(default_factory=list)
    was_trimmed: bool = False


@dataclass(frozen=True)
class TrimResult:
    text: str
    trimmed: bool


def trim_to_limit(text: str, max_chars: int) -> TrimResult:
    """Cut text to max_chars, keeping whole words when the last space is late enough.

    Trimmed output always ends with TRUNCATION_MARKER and is at most
    ``max_chars + len(TRUNCATION_MARKER)`` long.
    """
    if len(text) <= max_chars:
        return TrimResult(text=text, trimmed=False)

    cut = text[: max(0, max_chars)]
    last_space = cut.rfind(" ")
    if last_space >= 0 and last_space >= max_chars * WORD_BOUNDARY_RATIO:
        cut = cut[:last_space]
    return TrimResult(text=cut + TRUNCATION_MARKER, trimmed=True)


def _drop_layer(result: BuiltContext, name: str) -> None:
    logger.warning("context_layer_dropped layer=%s reason=budget_exhausted", name)
    result.layers.append(LayerReport(name=name, chars=0, trimmed=True))
    result.was_trimmed = True


def _sandbox_within(layer: ContextLayer, effective_max: int) -> TrimResult | None:
    # Shrink the directive, never the wrapper; None when not even the wrapper fits.
    overhead = sandbox_overhead_chars()
    directive_max = effective_max - overhead
    if directive_max <= 0:
        return None
    own_max = layer.max_chars - overhead if layer.max_chars > 0 else directive_max
    directive_chars = len(sanitize_custom_prompt(layer.content).sanitized)
    trimmed = directive_max < own_max and directive_chars > directive_max
    return TrimResult(
        text=sandbox_user_directive(layer.content, max_chars=directive_max), trimmed=trimmed
    )


def build_context(layers: list[ContextLayer], *, max_context_chars: int | None = None) -> BuiltContext:
    budget = get_settings().context_max_chars if max_context_chars is None else max_context_chars
    remaining = budget
    result = BuiltContext()
    parts: list[str] = []

    for layer in layers:
        if not layer.content or not layer.content.strip():
            result.layers.append(LayerReport(name=layer.name, chars=0, trimmed=False))
            continue

        layer_cap = layer.max_chars if layer.max_chars > 0 else remaining
        effective_max = min(layer_cap, remaining)
        if effective_max <= 0:
            _drop_layer(result, layer.name)
            continue

        if layer.sandboxed:
            sandboxed = _sandbox_within(layer, effective_max)
            if sandboxed is None:
                _drop_layer(result, layer.name)
                continue
            emitted = sandboxed.text
            trimmed = sandboxed.trimmed
            if trimmed:
                logger.warning(
                    "context_layer_trimmed layer=%s original_chars=%s emitted_chars=%s",
                    layer.name,
                    len(layer.content),
                    len(emitted),
                )
        elif len(layer.content) <= effective_max:
            emitted = layer.content
            trimmed = False
        else:
            # Reserve room for the marker so the layer never exceeds its cap.
            content_cap = effective_max - len(TRUNCATION_MARKER)
            if content_cap <= 0:
                _drop_layer(result, layer.name)
                continue
            emitted = trim_to_limit(layer.content, content_cap).text
            trimmed = True
            logger.warning(
                "context_layer_trimmed layer=%s original_chars=%s emitted_chars=%s",
                layer.name,
                len(layer.content),
                len(emitted),
            )

        parts.append(emitted)
        result.total_chars += len(emitted)
        remaining -= len(emitted)
        result.was_trimmed = result.was_trimmed or trimmed
        result.layers.append(LayerReport(name=layer.name, chars=len(emitted), trimmed=trimmed))

    result.text = LAYER_SEPARATOR.join(parts)
    return result


def create_standard_layers(
    *,
    system_instructions: str,
    mode_template: str,
    category_block: str = "",
    framework_block: str = "",
    document_block: str = "",
    custom_prompt: str = "",
) -> list[ContextLayer]:
    # Priority order matters: the custom prompt is last so it is trimmed first.
    settings = get_settings()
    custom_max = settings.context_max_custom_prompt_chars
    directive = custom_prompt if custom_prompt and custom_prompt.strip() else ""
    return [
        ContextLayer(LAYER_SYSTEM, system_instructions, 0),
        ContextLayer(LAYER_MODE, mode_template, 0),
        ContextLayer(LAYER_CATEGORIES, category_block, 0),
        ContextLayer(LAYER_FRAMEWORKS, framework_block, settings.context_max_framework_chars),
        ContextLayer(LAYER_DOCUMENTS, document_block, settings.context_max_document_chars),
        ContextLayer(
            LAYER_CUSTOM_PROMPT, directive, custom_max + sandbox_overhead_chars(), sandboxed=True
        ),
    ]

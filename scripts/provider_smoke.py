from __future__ import annotations

import argparse
import asyncio
import sys

from promptgate.core.errors import ProviderConfigError, ProviderError, ProviderTimeoutError
from promptgate.prompts.question_generator import QUESTION_GENERATOR
from promptgate.providers.llm.factory import get_llm_provider
from promptgate.services.context_builder import build_context
from promptgate.services.schemas import validate_payload


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Send a small question-generation prompt through the configured provider."
    )
    parser.add_argument("--count", type=int, default=2, help="Number of questions to request")
    parser.add_argument("--model", default=None, help="Override the configured model")
    return parser


def _format_error(exc: Exception) -> tuple[int, str]:
    # Map known provider failures to stable, actionable messages.
    if isinstance(exc, ProviderConfigError):
        return 2, f"PROVIDER_CONFIG_MISSING: {exc}"
    if isinstance(exc, ProviderTimeoutError):
        return 3, f"PROVIDER_TIMEOUT: {exc}"
    if isinstance(exc, ProviderError):
        return 4, f"PROVIDER_ERROR: {exc}"
    return 1, f"UNKNOWN_ERROR: {type(exc).__name__}"


async def _run(args: argparse.Namespace) -> int:
    variables = validate_payload(
        QUESTION_GENERATOR.variables_schema,
        {"question_count": args.count, "complexity": "simple", "tone": "neutral"},
    )
    if not variables.ok:
        print("INVALID_VARIABLES: " + "; ".join(variables.errors), file=sys.stderr)
        return 2
    context = build_context(QUESTION_GENERATOR.build_layers(variables.value))
    provider = get_llm_provider()
    response = await provider.generate(context.text, model=args.model)
    output = validate_payload(QUESTION_GENERATOR.output_schema, response.data)
    print(
        f"provider={response.provider} model={response.model} "
        f"context_chars={context.total_chars} output_valid={output.ok}"
    )
    for error in output.errors:
        print(f"- {error}")
    return 0 if output.ok else 5


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # noqa: BLE001 - surface actionable errors
        code, message = _format_error(exc)
        print(message, file=sys.stderr)
        return code


if __name__ == "__main__":
    raise SystemExit(main())

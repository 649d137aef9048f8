from __future__ import annotations

import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Deque


@dataclass(frozen=True)
class AICallSample:
    # Call shape only; prompt and response content are never recorded.
    ts: float
    feature: str
    prompt_id: str | None
    provider: str
    model: str
    duration_ms: float
    success: bool
    used_fallback: bool
    error_code: str | None = None


@dataclass(frozen=True)
class RequestSample:
    ts: float
    path: str
    status_code: int
    latency_ms: float


_ai_samples: Deque[AICallSample] = deque(maxlen=10000)
_request_samples: Deque[RequestSample] = deque(maxlen=20000)
_counters: dict[str, int] = defaultdict(int)


def record_ai_call(
    *,
    feature: str,
    prompt_id: str | None,
    provider: str | None,
    model: str | None,
    duration_ms: float,
    success: bool,
    used_fallback: bool = False,
    error_code: str | None = None,
) -> None:
    _ai_samples.append(
        AICallSample(
            ts=time.time(),
            feature=feature,
            prompt_id=prompt_id,
            provider=provider or "unknown",
            model=model or "unknown",
            duration_ms=duration_ms,
            success=success,
            used_fallback=used_fallback,
            error_code=error_code,
        )
    )
    increment_counter("ai_calls_total")
    if not success:
        increment_counter(f"ai_calls_failed_total.{error_code or 'unknown'}")


def record_request(*, path: str, status_code: int, latency_ms: float) -> None:
    # Track request latency and status for ops visibility.
    _request_samples.append(
        RequestSample(ts=time.time(), path=path, status_code=status_code, latency_ms=latency_ms)
    )


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def _p95(values: list[float]) -> float | None:
    if not values:
        return None
    ordered = sorted(values)
    idx = max(0, math.ceil(0.95 * len(ordered)) - 1)
    return ordered[idx]


def ai_call_summary(window_s: int) -> dict[str, Any]:
    # Aggregate AI call outcomes per feature over the window.
    cutoff = time.time() - window_s
    grouped: dict[str, list[AICallSample]] = defaultdict(list)
    for sample in _ai_samples:
        if sample.ts >= cutoff:
            grouped[sample.feature].append(sample)
    result: dict[str, Any] = {}
    for feature, samples in grouped.items():
        total = len(samples)
        successes = sum(1 for sample in samples if sample.success)
        result[feature] = {
            "total": total,
            "success_rate": (successes / total) * 100.0,
            "fallback_count": sum(1 for sample in samples if sample.used_fallback),
            "p95_duration_ms": _p95([sample.duration_ms for sample in samples]),
            "providers": sorted({sample.provider for sample in samples}),
        }
    return result


def p95_request_latency(window_s: int, *, path_prefix: str | None = None) -> float | None:
    cutoff = time.time() - window_s
    return _p95(
        [
            sample.latency_ms
            for sample in _request_samples
            if sample.ts >= cutoff and (path_prefix is None or sample.path.startswith(path_prefix))
        ]
    )


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def reset_telemetry() -> None:
    # Clear in-process samples for deterministic tests.
    _ai_samples.clear()
    _request_samples.clear()
    _counters.clear()

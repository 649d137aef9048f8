from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from promptgate.core.config import get_settings
from promptgate.core.errors import ProviderConfigError, ProviderError, ProviderTimeoutError
from promptgate.providers.llm.base import ProviderResponse

logger = logging.getLogger(__name__)


class GeminiVertexProvider:
    name = "gemini"

    def __init__(self, request_id: str | None = None) -> None:
        self._settings = get_settings()
        self._request_id = request_id

    def _validate_config(self) -> tuple[str, str, str]:
        # Fail fast to avoid confusing downstream SDK errors.
        project = self._settings.google_cloud_project
        location = self._settings.google_cloud_location
        model = self._settings.gemini_model
        missing = []
        if not project:
            missing.append("GOOGLE_CLOUD_PROJECT")
        if not location:
            missing.append("GOOGLE_CLOUD_LOCATION")
        if not model:
            missing.append("GEMINI_MODEL")
        if missing:
            raise ProviderConfigError(
                f"Vertex config missing: set {', '.join(missing)} in .env."
            )
        return project, location, model

    def _generate_sync(self, prompt: str, project: str, location: str, model_name: str) -> str:
        try:
            from vertexai import init
            from vertexai.generative_models import GenerationConfig, GenerativeModel
        except Exception as exc:  # pragma: no cover - import errors are environment-specific
            raise ProviderConfigError(
                "Vertex AI SDK not available. Install google-cloud-aiplatform."
            ) from exc

        init(project=project, location=location)
        model = GenerativeModel(model_name)
        response = model.generate_content(
            prompt,
            generation_config=GenerationConfig(response_mime_type="application/json"),
        )
        return getattr(response, "text", "") or ""

    async def generate(self, prompt: str, *, model: str | None = None) -> ProviderResponse:
        project, location, default_model = self._validate_config()
        model_name = model or default_model
        timeout_s = max(1, int(self._settings.vertex_timeout_s))

        logger.info("vertex_generate_start request_id=%s model=%s", self._request_id, model_name)
        try:
            raw = await asyncio.wait_for(
                asyncio.to_thread(self._generate_sync, prompt, project, location, model_name),
                timeout=timeout_s,
            )
        except ProviderConfigError:
            raise
        except asyncio.TimeoutError as exc:
            logger.warning("vertex_generate_timeout request_id=%s", self._request_id)
            raise ProviderTimeoutError("Vertex request timed out.") from exc
        except Exception as exc:
            logger.error(
                "vertex_generate_error request_id=%s error_type=%s",
                self._request_id,
                type(exc).__name__,
            )
            raise ProviderError("Vertex AI request failed.") from exc

        try:
            data: Any = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ProviderError("Vertex AI returned a non-JSON payload.") from exc
        if not isinstance(data, dict):
            data = {"result": data}
        data.setdefault("model", model_name)
        return ProviderResponse(data=data, provider=self.name, model=model_name)

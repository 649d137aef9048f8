from __future__ import annotations


class PromptGateError(Exception):
    """Base error for promptgate."""


class DomainError(PromptGateError):
    """Caller-facing error with a stable code and a message safe to display."""

    code = "DOMAIN_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RateLimitExceededError(DomainError):
    """Request count for a user or tenant exceeded the window threshold."""

    code = "RATE_LIMITED"

    def __init__(self, scope: str, window_key: str) -> None:
        super().__init__(f"Rate limit exceeded ({scope}) for window {window_key}")
        self.scope = scope
        self.window_key = window_key


class FeaturePermissionDeniedError(DomainError):
    """AI feature is disabled for the tenant or the caller's role is too low."""

    def __init__(self, reason: str, feature: str) -> None:
        if reason == "feature_disabled":
            message = f"AI feature '{feature}' is disabled for this tenant"
        else:
            message = f"Insufficient role to use AI feature '{feature}'"
        super().__init__(message)
        self.reason = reason
        self.feature = feature

    @property
    def code(self) -> str:  # type: ignore[override]
        return "FEATURE_DISABLED" if self.reason == "feature_disabled" else "PERMISSION_DENIED"


class AIResponseInvalidError(DomainError):
    """Caller input or provider output failed schema validation."""

    code = "AI_RESPONSE_INVALID"


class ServiceUnavailableError(DomainError):
    """Provider transport failure, provider error payload, or unclassified failure."""

    code = "SERVICE_UNAVAILABLE"


class ProviderConfigError(PromptGateError):
    """Missing or invalid provider configuration."""


class ProviderError(PromptGateError):
    """LLM provider request failure."""


class ProviderTimeoutError(ProviderError):
    """LLM provider request timed out."""

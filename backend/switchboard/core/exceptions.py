import asyncio
from typing import Any, Dict, Optional

import anthropic
import httpx
import openai
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class SwitchboardError(Exception):
    """Base exception for all Switchboard errors."""
    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ProviderNotConfiguredError(SwitchboardError):
    status_code = 503
    error_code = "provider_not_configured"

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(
            f"Provider '{provider}' is not configured. Please set the required API key.",
            {"provider": provider},
        )


class ProviderNotFoundError(SwitchboardError):
    status_code = 400
    error_code = "provider_not_found"

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message, {"provider": provider} if provider else None)


class ModelNotFoundError(SwitchboardError):
    status_code = 400
    error_code = "model_not_found"

    def __init__(self, model: str, provider: Optional[str] = None):
        self.model = model
        self.provider = provider
        suffix = f" for provider '{provider}'" if provider else ""
        super().__init__(f"Model '{model}' not found{suffix}", {"model": model, "provider": provider})


class RateLimitError(SwitchboardError):
    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(self, provider: str, retry_after: Optional[float] = None):
        self.provider = provider
        self.retry_after = retry_after
        message = f"Rate limit exceeded for {provider}."
        if retry_after is not None:
            message += f" Retry after {retry_after:g} seconds."
        super().__init__(message, {"provider": provider, "retry_after": retry_after})


class AuthenticationError(SwitchboardError):
    status_code = 401
    error_code = "authentication_error"

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(
            f"Authentication failed for {provider}. Please check your API key.",
            {"provider": provider},
        )


class ValidationError(SwitchboardError):
    status_code = 400
    error_code = "validation_error"


class StreamingError(SwitchboardError):
    status_code = 500
    error_code = "streaming_error"


class ProviderError(SwitchboardError):
    status_code = 502
    error_code = "provider_error"

    def __init__(self, message: str, provider: str, original_status: int = 0, details: Optional[Dict[str, Any]] = None):
        self.provider = provider
        self.original_status = original_status
        super().__init__(message, {"provider": provider, "original_status": original_status, **(details or {})})


class ToolLoopExceededError(SwitchboardError):
    status_code = 500
    error_code = "tool_loop_exceeded"

    def __init__(self, max_rounds: int):
        self.max_rounds = max_rounds
        super().__init__(
            f"Reached maximum of {max_rounds} tool call rounds without a final answer.",
            {"max_rounds": max_rounds},
        )


_RATE_LIMIT_SIGNALS = ("rate limit", "too many requests")
_AUTH_SIGNALS = ("unauthorized", "invalid api key", "authentication")


def _status_of(exc: BaseException) -> int:
    if isinstance(exc, (openai.APIStatusError, anthropic.APIStatusError)):
        return exc.status_code
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return 0


def _retry_after_of(exc: BaseException) -> Optional[float]:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def classify_provider_error(exc: BaseException, provider: str) -> SwitchboardError:
    """Map any upstream failure onto the Switchboard error taxonomy.

    Status codes win over message text; anything unrecognised becomes a
    ProviderError that keeps the original text in ``details``.
    """
    if isinstance(exc, SwitchboardError):
        return exc

    status = _status_of(exc)
    if status == 429:
        return RateLimitError(provider, _retry_after_of(exc))
    if status in (401, 403):
        return AuthenticationError(provider)

    if isinstance(
        exc,
        (asyncio.TimeoutError, httpx.TimeoutException, openai.APITimeoutError, anthropic.APITimeoutError),
    ):
        return StreamingError(f"Request to {provider} timed out", {"provider": provider, "timeout": True})

    text = str(exc)
    lowered = text.lower()
    if any(s in lowered for s in _RATE_LIMIT_SIGNALS):
        return RateLimitError(provider)
    if any(s in lowered for s in _AUTH_SIGNALS):
        return AuthenticationError(provider)

    return ProviderError(
        f"Request to {provider} failed",
        provider,
        original_status=status,
        details={"original_error": text or type(exc).__name__},
    )


async def switchboard_exception_handler(request: Request, exc: SwitchboardError) -> JSONResponse:
    content = {
        "error": {
            "code": exc.error_code,
            "message": exc.message,
            "type": type(exc).__name__,
        }
    }
    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        headers = {"Retry-After": str(int(exc.retry_after))}
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    return JSONResponse(
        status_code=ValidationError.status_code,
        content={
            "error": {
                "code": ValidationError.error_code,
                "message": message,
                "type": "ValidationError",
            }
        },
    )

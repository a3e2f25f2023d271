import asyncio

import anthropic
import httpx
import openai
import pytest

from switchboard.core.exceptions import (
    AuthenticationError,
    ModelNotFoundError,
    ProviderError,
    RateLimitError,
    StreamingError,
    classify_provider_error,
)

REQUEST = httpx.Request("POST", "https://upstream.test/v1/chat")


def _status_error(status: int, headers=None) -> httpx.HTTPStatusError:
    response = httpx.Response(status, request=REQUEST, headers=headers or {})
    return httpx.HTTPStatusError("upstream said no", request=REQUEST, response=response)


def test_http_429_with_retry_after():
    error = classify_provider_error(_status_error(429, {"retry-after": "12"}), "glean")
    assert isinstance(error, RateLimitError)
    assert error.retry_after == 12
    assert error.message == "Rate limit exceeded for glean. Retry after 12 seconds."


def test_openai_sdk_rate_limit():
    response = httpx.Response(429, request=REQUEST, headers={"retry-after": "3"})
    exc = openai.RateLimitError("slow down", response=response, body=None)
    error = classify_provider_error(exc, "openai")
    assert isinstance(error, RateLimitError)
    assert error.retry_after == 3


@pytest.mark.parametrize("status", [401, 403])
def test_auth_status(status):
    error = classify_provider_error(_status_error(status), "dust")
    assert isinstance(error, AuthenticationError)
    assert error.error_code == "authentication_error"


@pytest.mark.parametrize(
    "exc",
    [
        asyncio.TimeoutError(),
        httpx.ReadTimeout("read timed out", request=REQUEST),
        anthropic.APITimeoutError(request=REQUEST),
    ],
)
def test_timeouts(exc):
    error = classify_provider_error(exc, "anthropic")
    assert isinstance(error, StreamingError)
    assert error.message == "Request to anthropic timed out"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("429 Too Many Requests", RateLimitError),
        ("Rate limit reached for requests", RateLimitError),
        ("Invalid API key provided", AuthenticationError),
        ("401 Unauthorized", AuthenticationError),
    ],
)
def test_message_signals(text, expected):
    assert isinstance(classify_provider_error(RuntimeError(text), "openai"), expected)


def test_fallback_keeps_original_text():
    error = classify_provider_error(RuntimeError("socket exploded"), "ondobot")
    assert isinstance(error, ProviderError)
    assert error.message == "Request to ondobot failed"
    assert error.details["original_error"] == "socket exploded"
    assert error.details["provider"] == "ondobot"


def test_fallback_keeps_status():
    error = classify_provider_error(_status_error(500), "glean")
    assert isinstance(error, ProviderError)
    assert error.original_status == 500


def test_taxonomy_errors_pass_through():
    original = ModelNotFoundError("gpt-9", "openai")
    assert classify_provider_error(original, "openai") is original

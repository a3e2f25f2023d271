import asyncio

import httpx
import orjson
import pytest

from switchboard.core.exceptions import ValidationError
from switchboard.models.chat import ChatCompletionRequest, ChatMessage, FileAttachment
from switchboard.models.events import StreamEventType
from switchboard.providers.dust import DustProvider
from switchboard.providers.glean import GleanProvider
from switchboard.providers.ondobot import OndoBotProvider
from switchboard.streaming.lifecycle import collect


class Upstream:
    """Records requests and answers them with a canned response."""

    def __init__(self, respond):
        self.respond = respond
        self.requests = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        result = self.respond(request)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def payload(self, n: int = -1):
        return orjson.loads(self.requests[n].content)


def _ndjson(*frames) -> str:
    return "".join(orjson.dumps(f).decode() + "\n" for f in frames)


def _sse(*frames) -> str:
    return "".join(f"data: {orjson.dumps(f).decode()}\n\n" for f in frames)


def _request(*texts, model, conversation_id="conv-1"):
    messages = []
    for i, text in enumerate(texts):
        messages.append(ChatMessage(role="user" if i % 2 == 0 else "assistant", content=text))
    return ChatCompletionRequest(conversation_id=conversation_id, messages=messages, model=model)


class TestGlean:
    async def test_stream_with_citations_and_continuation(self, settings, catalog):
        upstream = Upstream(
            lambda r: httpx.Response(
                200,
                text=_ndjson(
                    {"delta": "Employees get "},
                    {"delta": "25 days.", "citations": [{"title": "PTO Policy", "url": "https://wiki/pto"}]},
                    {"citations": [{"title": "PTO Policy", "url": "https://wiki/pto"}], "chatId": "chat-77"},
                ),
            )
        )
        provider = GleanProvider(settings, catalog, http_client=upstream.client())
        events = [e async for e in provider.stream(_request("What is the vacation policy?", model="glean-assistant"))]

        assert [e.type for e in events][-1] == StreamEventType.DONE
        done = events[-1].data
        assert done.content == "Employees get 25 days."
        assert [c.title for c in done.citations] == ["PTO Policy"]
        assert done.usage.output_tokens > 0

        sent = upstream.requests[0]
        assert str(sent.url) == "https://glean.test/api/chat"
        assert sent.headers["authorization"] == "Bearer glean-test"
        assert upstream.payload()["messages"] == [{"role": "user", "content": "What is the vacation policy?"}]

        # The next turn of the same conversation resumes the upstream chat.
        follow_up = _request(
            "What is the vacation policy?", "Employees get 25 days.", "And for contractors?",
            model="glean-assistant",
        )
        [e async for e in provider.stream(follow_up)]
        payload = upstream.payload()
        assert payload["chatId"] == "chat-77"
        assert payload["messages"] == [{"role": "user", "content": "And for contractors?"}]

    async def test_agent_model_and_inlined_files(self, settings, catalog):
        upstream = Upstream(lambda r: httpx.Response(200, text=_ndjson({"delta": "ok"})))
        provider = GleanProvider(settings, catalog, http_client=upstream.client())
        message = ChatMessage(
            role="user",
            content="review this",
            files=[FileAttachment(name="app.py", content="print(1)", file_type="code", language="python")],
        )
        request = ChatCompletionRequest(messages=[message], model="glean-agent-hr-bot")
        await collect(provider.stream(request))

        payload = upstream.payload()
        assert payload["agentId"] == "hr-bot"
        assert payload["messages"][0]["content"] == (
            "review this\n\n--- File: app.py ---\n```python\nprint(1)\n```"
        )
        assert "chatId" not in payload

    async def test_error_frame_fails_stream_without_caching(self, settings, catalog):
        upstream = Upstream(
            lambda r: httpx.Response(
                200, text=_ndjson({"delta": "Par", "chatId": "chat-1"}, {"error": {"message": "agent crashed"}})
            )
        )
        provider = GleanProvider(settings, catalog, http_client=upstream.client())
        events = [e async for e in provider.stream(_request("hi", model="glean-assistant"))]

        assert events[-1].type == StreamEventType.ERROR
        assert events[-1].data.error == "agent crashed"
        assert provider.continuations.get("conv-1") is None

    async def test_upstream_status_errors(self, settings, catalog):
        upstream = Upstream(lambda r: httpx.Response(500, text="boom"))
        provider = GleanProvider(settings, catalog, http_client=upstream.client())
        events = [e async for e in provider.stream(_request("hi", model="glean-assistant"))]
        assert events[-1].data.code == "provider_error"
        assert events[-1].data.error == "glean API error (500)"

        upstream.respond = lambda r: httpx.Response(429, headers={"retry-after": "30"}, text="slow down")
        events = [e async for e in provider.stream(_request("hi", model="glean-assistant"))]
        assert events[-1].data.code == "rate_limit_exceeded"
        assert events[-1].data.error == "Rate limit exceeded for glean. Retry after 30 seconds."

    async def test_complete(self, settings, catalog):
        upstream = Upstream(
            lambda r: httpx.Response(
                200,
                json={
                    "id": "g-1",
                    "message": {"content": "Handbook says 25."},
                    "citations": [{"title": "Handbook", "url": "https://wiki/handbook"}],
                    "chatId": "chat-9",
                },
            )
        )
        provider = GleanProvider(settings, catalog, http_client=upstream.client())
        response = await provider.complete(_request("pto?", model="glean-assistant"))

        assert response.message.content == "Handbook says 25."
        assert response.citations[0].url == "https://wiki/handbook"
        assert upstream.payload()["stream"] is False
        assert provider.continuations.get("conv-1") == "chat-9"


class TestDust:
    async def test_stream_posts_latest_user_message(self, settings, catalog):
        upstream = Upstream(
            lambda r: httpx.Response(
                200,
                text=_sse(
                    {"type": "user_message_new"},
                    {"type": "assistant_message", "content": "Ticket "},
                    {"type": "assistant_message", "content": "filed."},
                )
                + "data: [DONE]\n\n",
            )
        )
        provider = DustProvider(settings, catalog, http_client=upstream.client())
        response = await collect(provider.stream(_request("hello", "hi!", "file a ticket", model="dust-assistant")))

        assert response.message.content == "Ticket filed."
        assert str(upstream.requests[0].url) == "https://dust.test/api/v1/conversations"
        assert upstream.payload() == {"message": {"content": "file a ticket"}, "blocking": False}

    async def test_workspace_agent_endpoint(self, settings, catalog):
        upstream = Upstream(lambda r: httpx.Response(200, text=_sse({"type": "assistant_message", "content": "ok"})))
        provider = DustProvider(settings, catalog, http_client=upstream.client())
        await collect(provider.stream(_request("hi", model="dust-acme-support")))

        assert str(upstream.requests[0].url) == "https://dust.test/api/v1/w/acme/assistant/conversations"
        assert upstream.payload()["message"]["mentions"] == [{"configurationId": "support"}]

    async def test_agent_error_frame(self, settings, catalog):
        upstream = Upstream(
            lambda r: httpx.Response(200, text=_sse({"type": "agent_error", "error": {"message": "quota exhausted"}}))
        )
        provider = DustProvider(settings, catalog, http_client=upstream.client())
        events = [e async for e in provider.stream(_request("hi", model="dust-assistant"))]

        assert [e.type for e in events] == [StreamEventType.START, StreamEventType.ERROR]
        assert events[-1].data.error == "quota exhausted"

    async def test_complete_without_user_text(self, settings, catalog):
        provider = DustProvider(settings, catalog, http_client=Upstream(lambda r: httpx.Response(200)).client())
        request = ChatCompletionRequest(messages=[ChatMessage(role="system", content="rules")], model="dust-assistant")
        with pytest.raises(ValidationError):
            await provider.complete(request)


def _ondobot_routes(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/chat/stream":
        return httpx.Response(
            200,
            text=_sse(
                {"id": "ondo-1", "structured": {"ticket": "OPS-12"}},
                {"delta": "Deploy "},
                {"delta": "approved."},
            )
            + "data: [DONE]\n\n",
        )
    if request.url.path == "/api/chat":
        return httpx.Response(
            200,
            json={
                "id": "ondo-2",
                "response": "Deploy approved.",
                "structured": {"ticket": "OPS-12"},
                "metadata": {"tokensUsed": 7},
            },
        )
    return httpx.Response(404)


class TestOndoBot:
    async def test_stream_deltas_with_structured_metadata(self, settings, catalog):
        upstream = Upstream(_ondobot_routes)
        provider = OndoBotProvider(settings, catalog, http_client=upstream.client())
        events = [e async for e in provider.stream(_request("approve deploy", model="ondobot-assistant"))]

        assert [e.type for e in events] == [
            StreamEventType.START,
            StreamEventType.DELTA,
            StreamEventType.DELTA,
            StreamEventType.DONE,
        ]
        done = events[-1].data
        assert done.content == "Deploy approved."
        assert done.metadata.structured == {"ticket": "OPS-12"}
        assert done.metadata.response_id == "ondo-1"
        assert done.usage.output_tokens > 0

        sent = upstream.requests[0]
        assert sent.url.path == "/api/chat/stream"
        assert sent.headers["accept"] == "text/event-stream"
        assert upstream.payload()["stream"] is True

    async def test_complete_uses_blocking_endpoint(self, settings, catalog):
        upstream = Upstream(_ondobot_routes)
        provider = OndoBotProvider(settings, catalog, http_client=upstream.client())
        response = await provider.complete(_request("approve deploy", model="ondobot-assistant"))

        assert upstream.requests[0].url.path == "/api/chat"
        assert response.message.content == "Deploy approved."
        assert response.metadata.structured == {"ticket": "OPS-12"}
        assert response.usage.output_tokens == 7

    async def test_hard_timeout_before_headers(self, settings, catalog):
        async def slow(request):
            await asyncio.sleep(5)
            return httpx.Response(200, text=_sse({"delta": "too late"}))

        provider = OndoBotProvider(settings, catalog, http_client=Upstream(slow).client())
        events = [e async for e in provider.stream(_request("hi", model="ondobot-assistant"))]

        assert events[-1].type == StreamEventType.ERROR
        assert events[-1].data.code == "streaming_error"
        assert events[-1].data.error == "Request to ondobot timed out"

    async def test_hard_timeout_covers_whole_stream(self, settings, catalog):
        async def stalling_body():
            yield b'data: {"delta": "Deploy "}\n\n'
            await asyncio.sleep(5)
            yield b'data: {"delta": "approved."}\n\n'

        upstream = Upstream(lambda r: httpx.Response(200, content=stalling_body()))
        provider = OndoBotProvider(settings, catalog, http_client=upstream.client())
        events = [e async for e in provider.stream(_request("hi", model="ondobot-assistant"))]

        assert [e.type for e in events] == [StreamEventType.START, StreamEventType.DELTA, StreamEventType.ERROR]
        assert events[1].data.delta == "Deploy "
        assert events[-1].data.error == "Request to ondobot timed out"

    def test_not_configured_without_url(self, settings, catalog):
        settings.ondobot_api_url = ""
        assert not OndoBotProvider(settings, catalog).is_configured()

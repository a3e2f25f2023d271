import asyncio

import pytest

from fakes import RepeatingProvider, ScriptedProvider, text_round, tool_round
from switchboard.core.exceptions import RateLimitError
from switchboard.models.chat import ChatCompletionRequest, ChatMessage
from switchboard.models.events import StreamEventType
from switchboard.models.tools import ToolResult
from switchboard.orchestration.tool_loop import ToolLoop, TurnStatus
from switchboard.providers.registry import ProviderRegistry
from switchboard.tools.base import create_tool
from switchboard.tools.builtin import register_builtin_tools
from switchboard.tools.registry import ToolRegistry


def _request(text="What's 6 times 7?"):
    return ChatCompletionRequest(
        conversation_id="conv-1",
        messages=[ChatMessage(role="user", content=text)],
        model="gpt-4o",
    )


@pytest.fixture
def tools():
    registry = register_builtin_tools(ToolRegistry(timeout_seconds=1.0, retry_delay_seconds=0))

    async def sleepy(args):
        await asyncio.sleep(args.get("delay", 0))
        return ToolResult(success=True, output=args.get("tag", ""))

    async def boom(args):
        raise RuntimeError("lookup service unavailable")

    registry.register(create_tool("sleepy", "Sleeps", {"type": "object"}, sleepy))
    registry.register(create_tool("boom", "Always fails", {"type": "object"}, boom))
    return registry


def _loop(settings, catalog, tools, provider, **kwargs):
    providers = ProviderRegistry(settings, catalog, factories={"openai": lambda s, c: provider})
    return ToolLoop(providers, tools, **kwargs)


async def test_plain_answer_needs_one_round(settings, catalog, tools):
    provider = ScriptedProvider(settings, catalog, [text_round("Hello", " there")])
    result = await _loop(settings, catalog, tools, provider).run_turn(_request("hi"))

    assert result.status == TurnStatus.COMPLETED
    assert result.rounds == 0
    assert [m.role for m in result.messages] == ["assistant"]
    assert result.final_message.content == "Hello there"
    assert result.tool_executions == []


async def test_tool_round_then_answer(settings, catalog, tools):
    provider = ScriptedProvider(
        settings,
        catalog,
        [
            tool_round(("call_1", "calculate", '{"operation": "multiply", "a": 6, "b": 7}')),
            text_round("It is 42."),
        ],
    )
    result = await _loop(settings, catalog, tools, provider).run_turn(_request())

    assert result.status == TurnStatus.COMPLETED
    assert result.rounds == 1
    tool_message = result.messages[1]
    assert tool_message.role == "tool"
    assert tool_message.tool_call_id == "call_1"
    assert tool_message.content == "42"
    assert result.final_message.content == "It is 42."
    assert result.usage.input_tokens == 30
    assert result.usage.output_tokens == 13

    second = provider.requests[1]
    assert [m.role for m in second.messages] == ["user", "assistant", "tool"]
    assert second.messages[1].tool_calls[0].function.name == "calculate"


async def test_tool_results_appended_in_call_order(settings, catalog, tools):
    provider = ScriptedProvider(
        settings,
        catalog,
        [
            tool_round(
                ("call_a", "sleepy", '{"delay": 0.05, "tag": "A"}'),
                ("call_b", "sleepy", '{"delay": 0, "tag": "B"}'),
            ),
            text_round("done"),
        ],
    )
    result = await _loop(settings, catalog, tools, provider).run_turn(_request())

    history = [_request().messages[0], *result.messages]
    assert [m.role for m in history] == ["user", "assistant", "tool", "tool", "assistant"]
    assert [tc.id for tc in history[1].tool_calls] == ["call_a", "call_b"]
    assert [m.tool_call_id for m in history[2:4]] == ["call_a", "call_b"]
    assert [m.content for m in history[2:4]] == ["A", "B"]
    # B finished first but still follows A
    assert result.tool_executions[1].completed_at <= result.tool_executions[0].completed_at


async def test_failed_tool_does_not_abort_turn(settings, catalog, tools):
    provider = ScriptedProvider(
        settings,
        catalog,
        [
            tool_round(
                ("call_ok", "calculate", '{"operation": "add", "a": 1, "b": 1}'),
                ("call_bad", "boom", "{}"),
                ("call_missing", "does_not_exist", "{}"),
            ),
            text_round("1 + 1 is 2; the lookup failed."),
        ],
    )
    result = await _loop(settings, catalog, tools, provider).run_turn(_request())

    assert result.status == TurnStatus.COMPLETED
    contents = {m.tool_call_id: m.content for m in result.messages if m.role == "tool"}
    assert contents == {
        "call_ok": "2",
        "call_bad": "lookup service unavailable",
        "call_missing": 'Tool "does_not_exist" not found',
    }
    assert [r.result.success for r in result.tool_executions] == [True, False, False]


async def test_provider_error_keeps_earlier_history(settings, catalog, tools):
    provider = ScriptedProvider(
        settings,
        catalog,
        [
            tool_round(("call_1", "calculate", '{"operation": "add", "a": 2, "b": 2}')),
            [("text", "partial"), ("raise", RateLimitError("openai", 5))],
        ],
    )
    result = await _loop(settings, catalog, tools, provider).run_turn(_request())

    assert result.status == TurnStatus.ERROR
    assert result.error_code == "rate_limit_exceeded"
    assert [m.role for m in result.messages] == ["assistant", "tool", "assistant"]
    assert result.final_message.content.startswith("Error: Rate limit exceeded for openai.")


async def test_round_limit(settings, catalog, tools):
    provider = RepeatingProvider(
        settings, catalog, tool_round(("call_x", "calculate", '{"operation": "add", "a": 1, "b": 1}'))
    )
    result = await _loop(settings, catalog, tools, provider, max_rounds=2).run_turn(_request())

    assert result.status == TurnStatus.TOOL_LOOP_EXCEEDED
    assert result.error_code == "tool_loop_exceeded"
    assert result.rounds == 2
    assert len(provider.requests) == 3
    assert len(result.tool_executions) == 2
    assert result.messages[-1].content == (
        "Error: Reached maximum of 2 tool call rounds without a final answer."
    )
    # the unanswered tool calls of the last round are not recorded
    assert result.messages[-2].role == "tool"


async def test_stream_turn_is_one_logical_stream(settings, catalog, tools):
    provider = ScriptedProvider(
        settings,
        catalog,
        [
            tool_round(("call_1", "get_current_time", '{"format": "unix"}'), text="Checking. "),
            text_round("It is ", "late."),
        ],
    )
    loop = _loop(settings, catalog, tools, provider)
    events = [e async for e in loop.stream_turn(_request("what time is it"), routing={"intent": "action"})]

    types = [e.type for e in events]
    assert types[0] == StreamEventType.START
    assert types.count(StreamEventType.START) == 1
    assert types[-1] == StreamEventType.DONE
    assert types.count(StreamEventType.DONE) == 1
    assert events[0].data.routing == {"intent": "action"}

    text = "".join(e.data.delta for e in events if e.type == StreamEventType.DELTA and e.data.delta)
    assert text == "Checking. It is late."

    done = events[-1].data
    assert done.content == "It is late."
    assert [m.role for m in done.messages] == ["assistant", "tool", "assistant"]
    assert done.tool_executions[0].tool_name == "get_current_time"
    assert done.usage.total_tokens == 43


async def test_stream_turn_error_is_terminal(settings, catalog, tools):
    provider = ScriptedProvider(settings, catalog, [[("raise", RuntimeError("connection reset"))]])
    events = [e async for e in _loop(settings, catalog, tools, provider).stream_turn(_request())]

    assert [e.type for e in events] == [StreamEventType.START, StreamEventType.ERROR]
    assert events[-1].data.code == "provider_error"
    assert events[-1].data.error == "Request to openai failed"

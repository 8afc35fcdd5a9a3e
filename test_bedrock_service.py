import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from bedrock_service import BedrockError, BedrockService, StreamChunk, format_messages
from sessions import ToolCall, Turn


def _event(payload):
    return {"chunk": {"bytes": json.dumps(payload).encode("utf-8")}}


STREAM = [
    _event({"type": "message_start", "message": {}}),
    _event({"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}),
    _event({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Writing "}}),
    _event({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "the file."}}),
    _event({"type": "content_block_stop", "index": 0}),
    _event({"type": "content_block_start", "index": 1,
            "content_block": {"type": "tool_use", "id": "toolu_abc", "name": "run_tests"}}),
    _event({"type": "content_block_delta", "delta": {"type": "input_json_delta", "partial_json": "{\"classN"}}),
    _event({"type": "content_block_delta", "delta": {"type": "input_json_delta", "partial_json": "ame\": \"Spin\"}"}}),
    _event({"type": "content_block_stop", "index": 1}),
    _event({"type": "message_delta", "delta": {"stop_reason": "tool_use"}}),
    _event({"type": "message_stop"}),
]


@pytest.fixture
def service():
    return BedrockService(model_id="test-model", region="us-east-1")


def test_format_messages_pairs_tool_use_and_result():
    call = ToolCall("read_file", {"filepath": "src/animations/FadeAnimation.ts"}, "toolu_1")
    history = [
        Turn.user("make a fade"),
        Turn.model_text("Let me look."),
        Turn.model_tool_call(call),
        Turn.tool_result("read_file", output="export class FadeAnimation {}", call_id="toolu_1"),
        Turn.user("CONTINUE"),
    ]
    messages = format_messages(history)

    assert [m["role"] for m in messages] == ["user", "assistant", "user"]
    assert [b["type"] for b in messages[1]["content"]] == ["text", "tool_use"]
    assert messages[1]["content"][1]["input"] == {"filepath": "src/animations/FadeAnimation.ts"}
    result_block, continue_block = messages[2]["content"]
    assert result_block == {"type": "tool_result", "tool_use_id": "toolu_1",
                            "content": "export class FadeAnimation {}"}
    assert continue_block == {"type": "text", "text": "CONTINUE"}


def test_format_messages_marks_tool_errors_and_fills_empty_text():
    history = [
        Turn.user(""),
        Turn.model_tool_call(ToolCall("run_tests", {"className": "X"}, "toolu_2")),
        Turn.tool_result("run_tests", error="boom", call_id="toolu_2"),
    ]
    messages = format_messages(history)
    assert messages[0]["content"][0]["text"] == "(no content)"
    assert messages[2]["content"][0]["is_error"] is True
    assert messages[2]["content"][0]["content"] == "boom"


def test_parse_events_yields_text_tool_calls_and_finish(service):
    chunks = list(service._parse_events(STREAM))
    assert [c.text for c in chunks if c.text] == ["Writing ", "the file."]
    calls = [tc for c in chunks for tc in c.tool_calls]
    assert calls == [ToolCall("run_tests", {"className": "Spin"}, "toolu_abc")]
    assert chunks[-1].finish_reason == "tool_use"
    assert chunks[-1].finished


def test_max_tokens_is_not_a_finish():
    assert not StreamChunk(finish_reason="max_tokens").finished
    assert StreamChunk(finish_reason="end_turn").finished
    assert not StreamChunk(text="x").finished


def test_in_stream_exception_raises_retryable(service):
    stream = [_event({"type": "message_start"}), {"throttlingException": {"message": "slow down"}}]
    with pytest.raises(BedrockError) as exc_info:
        list(service._parse_events(stream))
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_open_stream_iterates_chunks(service):
    service.client = MagicMock()
    service.client.invoke_model_with_response_stream.return_value = {"body": iter(STREAM)}

    stream = await service.open_stream([Turn.user("hi")], system_prompt="sys", tools=[{"name": "t"}])
    chunks = [c async for c in stream]

    assert "".join(c.text or "" for c in chunks) == "Writing the file."
    kwargs = service.client.invoke_model_with_response_stream.call_args.kwargs
    body = json.loads(kwargs["body"])
    assert body["system"] == "sys"
    assert body["tools"] == [{"name": "t"}]
    assert body["messages"] == [{"role": "user", "content": [{"type": "text", "text": "hi"}]}]


@pytest.mark.asyncio
async def test_throttling_on_open_is_retryable(service):
    service.client = MagicMock()
    service.client.invoke_model_with_response_stream.side_effect = ClientError(
        {"Error": {"Code": "ThrottlingException", "Message": "Rate exceeded"}},
        "InvokeModelWithResponseStream",
    )
    with pytest.raises(BedrockError) as exc_info:
        await service.open_stream([Turn.user("hi")])
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_validation_error_on_open_is_fatal(service):
    service.client = MagicMock()
    service.client.invoke_model_with_response_stream.side_effect = ClientError(
        {"Error": {"Code": "ValidationException", "Message": "bad input"}},
        "InvokeModelWithResponseStream",
    )
    with pytest.raises(BedrockError) as exc_info:
        await service.open_stream([Turn.user("hi")])
    assert exc_info.value.retryable is False

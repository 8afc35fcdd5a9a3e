"""
Amazon Bedrock service module.
Defines the streaming model-service interface used by the agent loop and
its Bedrock (Anthropic Messages API) implementation.
"""

import asyncio
import json
import logging
import queue
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, Iterator, List, Optional, Sequence

import boto3
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from config import aws_config, model_config
from sessions import ROLE_MODEL, ROLE_USER, ToolCall, Turn

logger = logging.getLogger(__name__)

# Stop reasons that mean the model was cut off rather than finishing its turn
LENGTH_STOP_REASONS = frozenset({"max_tokens"})

_RETRYABLE_ERROR_CODES = frozenset({
    "ThrottlingException",
    "ServiceUnavailableException",
    "InternalServerException",
    "ModelNotReadyException",
    "ModelStreamErrorException",
})

# Exception payloads Bedrock can deliver inside the event stream itself
_STREAM_EXCEPTION_KEYS = (
    "internalServerException",
    "modelStreamErrorException",
    "throttlingException",
    "serviceUnavailableException",
    "validationException",
)

_CONNECTION_ERRORS = (
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
)


class BedrockError(Exception):
    """Custom exception for Bedrock service errors"""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


@dataclass
class GenerationConfig:
    """Configuration for a single generation request"""
    max_tokens: int = 8192
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    stop_sequences: Optional[List[str]] = None

    @classmethod
    def from_model_config(cls) -> "GenerationConfig":
        return cls(
            max_tokens=model_config.max_tokens,
            temperature=model_config.temperature,
            top_p=model_config.top_p,
            top_k=model_config.top_k,
        )


@dataclass
class StreamChunk:
    """One streamed piece of a model turn."""
    text: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: Optional[str] = None

    @property
    def finished(self) -> bool:
        """True when this chunk carries the service's end-of-turn marker."""
        return self.finish_reason is not None and self.finish_reason not in LENGTH_STOP_REASONS


class ModelService(ABC):
    """
    Streaming completion service the agent loop talks to.

    Implementations open one stream per model turn and yield StreamChunks
    until the turn is over.
    """

    @abstractmethod
    async def open_stream(
        self,
        history: Sequence[Turn],
        system_prompt: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncIterator[StreamChunk]:
        """Open a stream for the next model turn."""


def _text_block(text: Optional[str]) -> Dict[str, Any]:
    """API requires non-empty text blocks."""
    return {"type": "text", "text": text if (text or "").strip() else "(no content)"}


def format_messages(history: Sequence[Turn]) -> List[Dict[str, Any]]:
    """Convert session turns to Anthropic Messages API messages.

    Tool calls become ``tool_use`` blocks, tool results become
    ``tool_result`` blocks on a user message, and consecutive messages with
    the same role are merged so roles always alternate.
    """
    messages: List[Dict[str, Any]] = []
    for turn in history:
        if turn.role == ROLE_USER:
            role, block = "user", _text_block(turn.text)
        elif turn.role == ROLE_MODEL:
            role = "assistant"
            if turn.tool_call is not None:
                block = {
                    "type": "tool_use",
                    "id": turn.tool_call.id,
                    "name": turn.tool_call.name,
                    "input": dict(turn.tool_call.args),
                }
            else:
                block = _text_block(turn.text)
        else:
            role = "user"
            content = turn.error if turn.error is not None else (turn.output or "(no output)")
            block = {
                "type": "tool_result",
                "tool_use_id": turn.call_id,
                "content": content,
            }
            if turn.error is not None:
                block["is_error"] = True

        if messages and messages[-1]["role"] == role:
            messages[-1]["content"].append(block)
        else:
            messages.append({"role": role, "content": [block]})
    return messages


def new_tool_call_id() -> str:
    return f"toolu_{uuid.uuid4().hex[:24]}"


class BedrockService(ModelService):
    """
    Service class for Amazon Bedrock interactions.
    Streams Anthropic Claude responses through invoke_model_with_response_stream.
    """

    def __init__(
        self,
        model_id: Optional[str] = None,
        region: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
    ):
        self.model_id = model_id or model_config.model_id
        self.region = region or aws_config.region
        self.config = config or GenerationConfig.from_model_config()

        self.client = self._create_client()
        logger.info(f"BedrockService initialized with model: {self.model_id}")

    def _create_client(self) -> Any:
        """Create and configure the Bedrock runtime client"""
        try:
            session_kwargs: Dict[str, Any] = {"region_name": self.region}

            if aws_config.has_profile():
                session_kwargs["profile_name"] = aws_config.profile_name
            elif aws_config.has_explicit_credentials():
                session_kwargs["aws_access_key_id"] = aws_config.access_key_id
                session_kwargs["aws_secret_access_key"] = aws_config.secret_access_key
                if aws_config.has_session_token():
                    session_kwargs["aws_session_token"] = aws_config.session_token

            session = boto3.Session(**session_kwargs)
            return session.client("bedrock-runtime")

        except NoCredentialsError:
            raise BedrockError("AWS credentials not configured.")
        except Exception as e:
            raise BedrockError(f"Failed to initialize Bedrock client: {e}")

    def _format_request_body(
        self,
        history: Sequence[Turn],
        system_prompt: Optional[str],
        tools: Optional[List[Dict[str, Any]]],
    ) -> Dict[str, Any]:
        """Format the request body for Anthropic Claude models with tool_use"""
        config = self.config
        body: Dict[str, Any] = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": config.max_tokens,
            "messages": format_messages(history),
        }
        if config.temperature is not None:
            body["temperature"] = config.temperature
        elif config.top_p is not None:
            body["top_p"] = config.top_p
        if config.top_k is not None:
            body["top_k"] = config.top_k
        if config.stop_sequences:
            body["stop_sequences"] = config.stop_sequences
        if system_prompt:
            body["system"] = system_prompt
        if tools:
            body["tools"] = tools

        logger.debug(f"Request body keys: {list(body.keys())}, messages: {len(body['messages'])}")
        return body

    @staticmethod
    def _wrap_client_error(e: ClientError) -> BedrockError:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        error_message = e.response.get("Error", {}).get("Message", str(e))
        logger.error(f"Bedrock API error: {error_code} - {error_message}")

        if error_code in ("ExpiredTokenException", "InvalidSignatureException"):
            return BedrockError("AWS credentials expired. Please refresh.")
        return BedrockError(
            f"Bedrock API error ({error_code}): {error_message}",
            retryable=error_code in _RETRYABLE_ERROR_CODES,
        )

    async def open_stream(
        self,
        history: Sequence[Turn],
        system_prompt: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncIterator[StreamChunk]:
        """Start a streaming completion. Errors opening the stream raise here;
        errors while reading it raise from the returned iterator."""
        request_body = self._format_request_body(history, system_prompt, tools)
        logger.info(f"Streaming from model: {self.model_id}")
        try:
            response = await asyncio.to_thread(
                self.client.invoke_model_with_response_stream,
                modelId=self.model_id,
                body=json.dumps(request_body),
                contentType="application/json",
                accept="application/json",
            )
        except ClientError as e:
            raise self._wrap_client_error(e)
        except _CONNECTION_ERRORS as e:
            raise BedrockError(f"Connection error: {e}", retryable=True)
        return self._iterate(response["body"])

    async def _iterate(self, event_stream: Iterable[Dict[str, Any]]) -> AsyncIterator[StreamChunk]:
        """Drain the blocking botocore event stream on a thread and re-yield
        its chunks on the event loop."""
        chunk_queue: "queue.Queue[Any]" = queue.Queue()

        def _stream_producer():
            try:
                for c in self._parse_events(event_stream):
                    chunk_queue.put(c)
                chunk_queue.put(None)  # sentinel: stream complete
            except Exception as exc:
                chunk_queue.put(exc)

        producer_thread = threading.Thread(target=_stream_producer, daemon=True)
        producer_thread.start()

        loop = asyncio.get_running_loop()
        while True:
            item = await loop.run_in_executor(None, chunk_queue.get)
            if item is None:
                break
            if isinstance(item, ClientError):
                raise self._wrap_client_error(item)
            if isinstance(item, _CONNECTION_ERRORS):
                raise BedrockError(f"Connection error: {item}", retryable=True)
            if isinstance(item, Exception):
                raise item
            yield item

    def _parse_events(self, event_stream: Iterable[Dict[str, Any]]) -> Iterator[StreamChunk]:
        current_tool: Optional[Dict[str, str]] = None
        tool_json_parts: List[str] = []

        for event in event_stream:
            for key in _STREAM_EXCEPTION_KEYS:
                if key in event:
                    message = event[key].get("message", key)
                    raise BedrockError(f"Stream error ({key}): {message}",
                                       retryable=key != "validationException")
            if "chunk" not in event:
                continue
            chunk = json.loads(event["chunk"]["bytes"])
            event_type = chunk.get("type", "")

            if event_type == "content_block_start":
                block = chunk.get("content_block", {})
                if block.get("type") == "tool_use":
                    current_tool = {"id": block.get("id", ""), "name": block.get("name", "")}
                    tool_json_parts = []

            elif event_type == "content_block_delta":
                delta = chunk.get("delta", {})
                delta_type = delta.get("type", "")
                if delta_type == "text_delta":
                    text = delta.get("text", "")
                    if text:
                        yield StreamChunk(text=text)
                elif delta_type == "input_json_delta":
                    partial = delta.get("partial_json", "")
                    if partial:
                        tool_json_parts.append(partial)

            elif event_type == "content_block_stop":
                if current_tool is not None:
                    try:
                        args = json.loads("".join(tool_json_parts)) if tool_json_parts else {}
                    except json.JSONDecodeError:
                        logger.warning(f"Malformed tool input for {current_tool['name']}")
                        args = {}
                    yield StreamChunk(tool_calls=[ToolCall(
                        name=current_tool["name"],
                        args=args,
                        id=current_tool["id"] or new_tool_call_id(),
                    )])
                    current_tool = None

            elif event_type == "message_delta":
                stop_reason = chunk.get("delta", {}).get("stop_reason")
                if stop_reason:
                    yield StreamChunk(finish_reason=stop_reason)

"""OpenRouter chat model client with streaming tool calls."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Union

from app.config import settings
from app.errors import UpstreamStreamFailure
from app.models.messages import Message, Role, TextPart, ToolInvocationPart, ToolInvocationState


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class TextDelta:
    text: str


@dataclass
class ToolCallStarted:
    id: str
    name: str


@dataclass
class ToolCallRequest:
    id: str
    name: str
    arguments: dict[str, Any]
    raw_arguments: str = ""
    parse_error: str | None = None


StreamPart = Union[TextDelta, ToolCallStarted]


@dataclass
class _PendingToolCall:
    id: str | None = None
    name: str | None = None
    arguments: str = ""
    announced: bool = False


@dataclass
class StepResult:
    text: str = ""
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    finish_reason: str | None = None
    usage: Usage = field(default_factory=Usage)


class OpenRouterToolStream:
    """One streamed completion. Iterate for deltas, then read `result`."""

    def __init__(self, stream_coro: Any):
        self._stream_coro = stream_coro
        self._stream: Any | None = None
        self._pending: dict[int, _PendingToolCall] = {}
        self._text_parts: list[str] = []
        self.result = StepResult()

    async def __aenter__(self) -> "OpenRouterToolStream":
        try:
            self._stream = await self._stream_coro
        except Exception as exc:
            raise UpstreamStreamFailure(f"model request failed: {exc}") from exc
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._stream is not None:
            await self._stream.close()

    def __aiter__(self) -> AsyncIterator[StreamPart]:
        return self._iter_parts()

    async def _iter_parts(self) -> AsyncIterator[StreamPart]:
        if self._stream is None:
            return
        try:
            async for chunk in self._stream:
                usage = getattr(chunk, "usage", None)
                if usage:
                    self.result.usage = Usage(
                        input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                        output_tokens=getattr(usage, "completion_tokens", 0) or 0,
                    )

                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                choice = choices[0]
                if getattr(choice, "finish_reason", None):
                    self.result.finish_reason = choice.finish_reason
                delta = getattr(choice, "delta", None)
                if not delta:
                    continue

                text = getattr(delta, "content", None)
                if text:
                    self._text_parts.append(text)
                    yield TextDelta(text=text)

                for tool_delta in getattr(delta, "tool_calls", None) or []:
                    started = self._accumulate_tool_call(tool_delta)
                    if started is not None:
                        yield started
        except UpstreamStreamFailure:
            raise
        except Exception as exc:
            raise UpstreamStreamFailure(f"model stream failed: {exc}") from exc

        self.result.text = "".join(self._text_parts)
        self.result.tool_calls = self._complete_tool_calls()

    def _accumulate_tool_call(self, tool_delta: Any) -> ToolCallStarted | None:
        index = getattr(tool_delta, "index", None)
        if index is None:
            index = len(self._pending)
        pending = self._pending.setdefault(index, _PendingToolCall())

        if getattr(tool_delta, "id", None):
            pending.id = tool_delta.id
        function = getattr(tool_delta, "function", None)
        if function is not None:
            if getattr(function, "name", None):
                pending.name = function.name
            if getattr(function, "arguments", None):
                pending.arguments += function.arguments

        if not pending.announced and pending.id and pending.name:
            pending.announced = True
            return ToolCallStarted(id=pending.id, name=pending.name)
        return None

    def _complete_tool_calls(self) -> list[ToolCallRequest]:
        calls: list[ToolCallRequest] = []
        for index in sorted(self._pending):
            pending = self._pending[index]
            if not pending.id or not pending.name:
                continue
            raw = pending.arguments or "{}"
            try:
                parsed = json.loads(raw)
                parse_error = None
            except json.JSONDecodeError as exc:
                parsed, parse_error = {}, f"invalid JSON arguments: {exc.msg}"
            if not isinstance(parsed, dict):
                parsed, parse_error = {}, "tool arguments must be a JSON object"
            calls.append(
                ToolCallRequest(
                    id=pending.id,
                    name=pending.name,
                    arguments=parsed,
                    raw_arguments=raw,
                    parse_error=parse_error,
                )
            )
        return calls


def to_openai_messages(system: str, messages: list[Message]) -> list[dict[str, Any]]:
    """Flatten chat messages (with tool invocation parts) into chat-completions messages."""
    openai_messages: list[dict[str, Any]] = [{"role": "system", "content": system}]

    for message in messages:
        if message.role != Role.ASSISTANT:
            openai_messages.append({"role": message.role.value, "content": message.text or message.content})
            continue

        # An assistant message spanning several steps is split back into
        # (text, tool_calls) + tool results per step.
        text_buffer: list[str] = []
        calls: list[ToolInvocationPart] = []

        def flush() -> None:
            if not text_buffer and not calls:
                return
            msg: dict[str, Any] = {"role": "assistant", "content": "".join(text_buffer) or None}
            if calls:
                msg["tool_calls"] = [
                    {
                        "id": call.tool_call_id,
                        "type": "function",
                        "function": {"name": call.tool_name, "arguments": json.dumps(call.args)},
                    }
                    for call in calls
                ]
            openai_messages.append(msg)
            for call in calls:
                openai_messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.tool_call_id,
                        "content": json.dumps(call.result, default=str),
                    }
                )
            text_buffer.clear()
            calls.clear()

        for part in message.parts:
            if isinstance(part, TextPart):
                if calls:
                    flush()
                text_buffer.append(part.text)
            elif part.state == ToolInvocationState.RESULT:
                calls.append(part)
        flush()

    return openai_messages


def to_openai_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t.get("description", ""),
                "parameters": t.get("input_schema", {"type": "object", "properties": {}}),
            },
        }
        for t in tools
    ]


class OpenRouterChatModel:
    """Model handle consumed by the chat agent."""

    def __init__(self, openai_client: Any, model: str):
        self._client = openai_client
        self.model = model

    def stream(
        self,
        *,
        system: str,
        messages: list[Message],
        tools: list[dict[str, Any]] | None,
        max_tokens: int,
        tool_choice: str = "auto",
    ) -> OpenRouterToolStream:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(system, messages),
            "max_tokens": max_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            kwargs["tools"] = to_openai_tools(tools)
            kwargs["tool_choice"] = tool_choice
        return OpenRouterToolStream(self._client.chat.completions.create(**kwargs))


def get_client() -> Any:
    """Get OpenRouter client via OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    return AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
    )


def get_model() -> str:
    """Get the active OpenRouter model id."""
    if settings.openrouter_model:
        return settings.openrouter_model
    return settings.default_model


_client: Any | None = None


def client() -> Any:
    """Get or create the shared AsyncOpenAI client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client


def chat_model(model: str | None = None) -> OpenRouterChatModel:
    return OpenRouterChatModel(client(), model or get_model())

from __future__ import annotations

import asyncio
import time
import uuid
from enum import Enum
from typing import Any, AsyncGenerator, Protocol

from app.agents.tools import ChatTools
from app.config import settings
from app.errors import RequestCancelled, ToolExecutionFailure
from app.llm_client import StepResult, TextDelta, ToolCallRequest, ToolCallStarted
from app.models.events import SSEEvent
from app.models.messages import (
    Message,
    MessagePart,
    Role,
    TextPart,
    ToolInvocationPart,
    ToolInvocationState,
)
from app.services import logger as log_service
from app.services import streaming
from app.services.cancellation import CancellationToken
from app.services.prompt_store import chat_system_prompt, render_prompt


class ChatModel(Protocol):
    model: str

    def stream(
        self,
        *,
        system: str,
        messages: list[Message],
        tools: list[dict[str, Any]] | None,
        max_tokens: int,
        tool_choice: str = "auto",
    ) -> Any: ...


class AgentState(str, Enum):
    GENERATING = "generating"
    EXECUTING_TOOLS = "executing_tools"
    FINISHED = "finished"


class ChatAgent:
    """Bounded tool-use loop behind one chat turn.

    Each step streams one model completion. If the model asks for tools, all
    calls of that step run concurrently, their results are recorded as
    tool-invocation parts in request order, and the model is invoked again.
    The last permitted step keeps the tool definitions but forbids calling
    them, so the loop always ends with an answer. `run` yields SSE events; the finished assistant message
    is available as `response_message` afterwards.
    """

    name = "chat"

    def __init__(
        self,
        model: ChatModel,
        tools: ChatTools | None = None,
        *,
        max_steps: int | None = None,
        max_tokens: int | None = None,
        system_prompt: str | None = None,
    ):
        self.model = model
        self.tools = tools or ChatTools()
        self.max_steps = max(int(max_steps or settings.max_steps), 1)
        self.max_tokens = max_tokens or settings.max_output_tokens
        self.system_prompt = system_prompt or chat_system_prompt()
        self.state = AgentState.GENERATING
        self.steps_taken = 0
        self.finish_reason = "stop"
        self._parts: list[MessagePart] = []
        self._message_id = uuid.uuid4().hex

    @property
    def response_message(self) -> Message:
        return Message(id=self._message_id, role=Role.ASSISTANT, parts=list(self._parts))

    async def run(
        self,
        messages: list[Message],
        cancel: CancellationToken,
    ) -> AsyncGenerator[SSEEvent, None]:
        pending_calls: list[ToolCallRequest] = []
        self.state = AgentState.GENERATING

        while self.state is not AgentState.FINISHED:
            cancel.raise_if_cancelled()

            if self.state is AgentState.GENERATING:
                self.steps_taken += 1
                final_step = self.steps_taken >= self.max_steps
                result = StepResult()
                async for event in self._generate(messages, final_step, result):
                    yield event

                if result.tool_calls and not final_step:
                    pending_calls = result.tool_calls
                    self.state = AgentState.EXECUTING_TOOLS
                    continue

                if final_step and (result.tool_calls or not result.text.strip()):
                    # The ceiling cut the turn short.
                    self.finish_reason = "step_limit"
                    if result.tool_calls:
                        log_service.log_event(
                            event_type="step_limit_reached",
                            message="Ignoring tool calls requested on the final step",
                            tool_calls=[c.name for c in result.tool_calls],
                        )
                    if not result.text.strip():
                        fallback = render_prompt("chat_agent.step_limit_fallback")
                        self._append_text(fallback)
                        yield streaming.text_delta(fallback, self.steps_taken)
                self.state = AgentState.FINISHED

            elif self.state is AgentState.EXECUTING_TOOLS:
                async for event in self._execute_tool_calls(pending_calls, cancel):
                    yield event
                pending_calls = []
                self.state = AgentState.GENERATING

    async def _generate(
        self,
        messages: list[Message],
        final_step: bool,
        result: StepResult,
    ) -> AsyncGenerator[SSEEvent, None]:
        step = self.steps_taken
        context = list(messages)
        if self._parts:
            context.append(self.response_message)

        system = self.system_prompt
        tool_choice = "auto"
        if final_step:
            # Earlier steps left tool blocks in the context; keep the definitions.
            tool_choice = "none"
            if self.max_steps > 1:
                system = f"{system}\n\n{render_prompt('chat_agent.step_limit_prompt')}"

        t0 = time.monotonic()
        try:
            async with self.model.stream(
                system=system,
                messages=context,
                tools=self.tools.definitions,
                tool_choice=tool_choice,
                max_tokens=self.max_tokens,
            ) as stream:
                async for part in stream:
                    if isinstance(part, TextDelta):
                        self._append_text(part.text)
                        yield streaming.text_delta(part.text, step)
                    elif isinstance(part, ToolCallStarted):
                        calling = ToolInvocationPart(
                            tool_call_id=part.id,
                            tool_name=part.name,
                            state=ToolInvocationState.CALLING,
                        )
                        yield streaming.tool_invocation(calling, step)
                step_result: StepResult = stream.result
        except Exception as exc:
            log_service.log_llm_call(
                model=self.model.model,
                caller=self.name,
                step=step,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(exc),
            )
            raise

        log_service.log_llm_call(
            model=self.model.model,
            caller=self.name,
            step=step,
            input_tokens=step_result.usage.input_tokens,
            output_tokens=step_result.usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
            finish_reason=step_result.finish_reason,
        )

        result.text = step_result.text
        result.tool_calls = step_result.tool_calls
        result.finish_reason = step_result.finish_reason
        result.usage = step_result.usage
        yield streaming.step_finish(step, step_result.finish_reason, len(step_result.tool_calls))

    async def _execute_tool_calls(
        self,
        calls: list[ToolCallRequest],
        cancel: CancellationToken,
    ) -> AsyncGenerator[SSEEvent, None]:
        step = self.steps_taken
        parts: list[ToolInvocationPart] = []
        for call in calls:
            part = ToolInvocationPart(
                tool_call_id=call.id,
                tool_name=call.name,
                args=call.arguments,
                state=ToolInvocationState.CALLED,
            )
            # Parts land in request order; results fill in as they arrive.
            self._parts.append(part)
            parts.append(part)
            yield streaming.tool_invocation(part, step)

        tasks = {
            asyncio.create_task(self._run_tool(call, cancel)): index
            for index, call in enumerate(calls)
        }
        pending = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in sorted(done, key=tasks.__getitem__):
                    part = parts[tasks[task]]
                    part.result = task.result()
                    part.state = ToolInvocationState.RESULT
                    yield streaming.tool_invocation(part, step)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    async def _run_tool(self, call: ToolCallRequest, cancel: CancellationToken) -> Any:
        t0 = time.monotonic()
        try:
            if call.parse_error:
                raise ToolExecutionFailure(call.parse_error, kind="invalid_arguments")
            result = await self.tools.execute(call.name, call.arguments, cancel)
        except RequestCancelled:
            raise
        except ToolExecutionFailure as exc:
            result = exc.to_payload()
        except Exception as exc:
            result = ToolExecutionFailure(str(exc) or type(exc).__name__).to_payload()

        failed = isinstance(result, dict) and "kind" in result and "error" in result
        log_service.log_tool_call(
            tool_name=call.name,
            tool_call_id=call.id,
            status="error" if failed else "success",
            duration_ms=int((time.monotonic() - t0) * 1000),
            args=call.arguments,
            error=result.get("error") if failed else None,
        )
        return result

    def _append_text(self, text: str) -> None:
        if self._parts and isinstance(self._parts[-1], TextPart):
            self._parts[-1].text += text
        else:
            self._parts.append(TextPart(text=text))


def append_response_messages(messages: list[Message], response: Message) -> list[Message]:
    """Conversation snapshot after a turn: prior messages plus the assistant reply."""
    if not response.parts:
        return list(messages)
    return [*messages, response]

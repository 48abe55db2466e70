from __future__ import annotations

import asyncio
from enum import Enum
from typing import AsyncGenerator

from app.agents.chat_agent import ChatAgent, append_response_messages
from app.errors import RequestCancelled
from app.models.events import SSEEvent
from app.models.messages import Message, derive_title
from app.services import logger as log_service
from app.services import streaming
from app.services.cancellation import CancellationToken
from app.services.chat_store import ChatStore

# Persistence tasks outlive aborted requests; keep references until they finish.
_background_tasks: set[asyncio.Task] = set()


class StreamState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    ABORTED = "aborted"


class ChatStreamSession:
    """Drives one chat turn and turns it into SSE frames.

    Frames: an optional NEW_CHAT_CREATED data frame first, then the agent's
    text/tool events, then `finish` (or a single generic `error`). The final
    snapshot write is shielded so a client disconnect cannot interrupt it
    once it has started.
    """

    def __init__(
        self,
        *,
        agent: ChatAgent,
        store: ChatStore,
        user_id: str,
        chat_id: str,
        messages: list[Message],
        is_new_chat: bool,
        cancel: CancellationToken | None = None,
    ):
        self.agent = agent
        self.store = store
        self.user_id = user_id
        self.chat_id = chat_id
        self.messages = messages
        self.is_new_chat = is_new_chat
        self.cancel = cancel or CancellationToken()
        self.state = StreamState.IDLE
        self.persist_task: asyncio.Task | None = None
        self._new_chat_sent = False

    async def events(self) -> AsyncGenerator[SSEEvent, None]:
        self.state = StreamState.STREAMING
        log_service.log_event(
            event_type="chat_started",
            message="Chat turn started",
            chat_id=self.chat_id,
            user_id=self.user_id,
            is_new_chat=self.is_new_chat,
            messages=len(self.messages),
        )
        try:
            if self.is_new_chat and not self._new_chat_sent:
                self._new_chat_sent = True
                yield streaming.new_chat_created(self.chat_id)

            async for event in self.agent.run(self.messages, self.cancel):
                yield event

            response = self.agent.response_message
            final_messages = append_response_messages(self.messages, response)
            self.persist_task = asyncio.create_task(self._persist(final_messages))
            _background_tasks.add(self.persist_task)
            self.persist_task.add_done_callback(_background_tasks.discard)
            await asyncio.shield(self.persist_task)

            self.state = StreamState.COMPLETED
            yield streaming.finish(response, self.agent.steps_taken, self.agent.finish_reason)
            log_service.log_event(
                event_type="chat_completed",
                message="Chat turn completed",
                chat_id=self.chat_id,
                steps=self.agent.steps_taken,
                finish_reason=self.agent.finish_reason,
            )
        except (asyncio.CancelledError, GeneratorExit):
            self._abort("client disconnected")
            raise
        except RequestCancelled as exc:
            self._abort(str(exc))
        except Exception as exc:
            self.state = StreamState.ERRORED
            log_service.logger.exception("Chat stream failed for chat %s", self.chat_id)
            log_service.log_event(
                event_type="stream_error",
                message="Unhandled error in chat stream",
                error=str(exc),
                chat_id=self.chat_id,
            )
            yield streaming.error()

    async def sse(self) -> AsyncGenerator[dict[str, str], None]:
        async for event in self.events():
            yield event.to_sse()

    def _abort(self, reason: str) -> None:
        self.state = StreamState.ABORTED
        self.cancel.cancel(reason)
        log_service.log_event(
            event_type="chat_aborted",
            message="Chat turn aborted",
            chat_id=self.chat_id,
            reason=reason,
            persist_scheduled=self.persist_task is not None,
        )

    async def _persist(self, messages: list[Message]) -> None:
        """Best-effort snapshot write; failures are logged, never surfaced."""
        title = derive_title(self.messages)
        try:
            await self.store.upsert(self.user_id, self.chat_id, title, messages)
        except Exception as exc:
            log_service.logger.error("Failed to persist chat %s: %s", self.chat_id, exc)
            log_service.log_event(
                event_type="db_error",
                message="Failed to persist chat snapshot",
                error=str(exc),
                chat_id=self.chat_id,
            )

"""
agent/orchestrator.py — Agent Orchestrator

The plan → execute → respond loop. For each inbound message:

    1. Seeds a fresh Transcript with the chat's recent history (up to
       history_limit stored messages) and then the user's text
    2. PLANNING        asks the model (planning schema) whether it needs tools
    3. EXECUTING_TOOLS dispatches the requested tools, appends the results,
                       and goes back to PLANNING
    4. FINALIZING      once the model has enough, asks for the final reply
                       (reply schema)
    5. DONE            returns the Reply and logs the exchange

PLANNING is visited at most max_iterations times per message; past that the
turn ends with the fixed overload reply. Every failure class ends in one of
the canned replies in agent.replies, never in a raised exception (except
cancellation, which always propagates).

Usage:
    orc = Orchestrator(llm, dispatcher, affect, ContextBuilder())
    reply = await orc.process_message(InboundMessage(chat_id="42", text="hi"))
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from maybot.affect.service import AffectService
from maybot.agent import replies
from maybot.agent.chat import ChatClient, deliver_reply, fire_and_forget
from maybot.agent.context_builder import ContextBuilder
from maybot.agent.response_parser import parse_plan, parse_reply
from maybot.agent.schemas import (
    PLAN_SCHEMA,
    REPLY_SCHEMA,
    InboundMessage,
    PlanStep,
    Reply,
    StructuredReply,
)
from maybot.agent.transcript import Transcript
from maybot.brain.llm_client import BaseLLMClient, LLMError, LLMTimeoutError
from maybot.brain.types import LLMConfig, ResponseSchema
from maybot.credentials.pool import is_throttling_error
from maybot.datastore.conversation_log import ConversationLog
from maybot.exceptions import MalformedOutputError, ProviderUnavailableError
from maybot.observability.logger import bind_conversation, clear_conversation, get_logger
from maybot.tools.dispatcher import ToolDispatcher
from maybot.tools.types import ToolCall, ToolContext, ToolResult, all_read_only

log = get_logger(__name__)

T = TypeVar("T")

# Max PLANNING visits per inbound message
_MAX_ITER = 10
_PLAN_ATTEMPTS = 3
_RETRY_DELAY_SECONDS = 1.0
_HISTORY_LIMIT = 50


class LoopState(str, Enum):
    PLANNING = "planning"
    EXECUTING_TOOLS = "executing_tools"
    FINALIZING = "finalizing"
    DONE = "done"


class TurnStatus(str, Enum):
    OK = "ok"
    MAX_ITERATIONS = "max_iterations"
    MALFORMED = "malformed"
    UNAVAILABLE = "unavailable"
    ERROR = "error"


@dataclass
class TurnResult:
    status: TurnStatus
    reply: Reply
    iterations: int = 0
    tool_calls: int = 0
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is TurnStatus.OK


@dataclass
class _Run:
    """Mutable state of one message's orchestration. Discarded afterwards."""
    message: InboundMessage
    context: ToolContext
    history: list[dict[str, Any]] = field(default_factory=list)
    transcript: Transcript = field(default_factory=Transcript)
    state: LoopState = LoopState.PLANNING
    iterations: int = 0
    tool_calls: int = 0
    exhausted: bool = False


class Orchestrator:
    """
    Coordinates the full loop for each inbound message.

    Inject all dependencies via constructor; use from_settings() when wiring
    up the application.
    """

    def __init__(
        self,
        llm: BaseLLMClient,
        dispatcher: ToolDispatcher,
        affect: AffectService,
        context_builder: ContextBuilder,
        *,
        llm_config: Optional[LLMConfig] = None,
        chat: Optional[ChatClient] = None,
        conversation_log: Optional[ConversationLog] = None,
        max_iterations: int = _MAX_ITER,
        plan_attempts: int = _PLAN_ATTEMPTS,
        retry_delay_seconds: float = _RETRY_DELAY_SECONDS,
        llm_timeout_seconds: Optional[float] = None,
        turn_timeout_seconds: Optional[float] = None,
        history_limit: int = _HISTORY_LIMIT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if plan_attempts < 1:
            raise ValueError("plan_attempts must be at least 1")
        if history_limit < 0:
            raise ValueError("history_limit must not be negative")
        self._llm = llm
        self._dispatcher = dispatcher
        self._affect = affect
        self._ctx = context_builder
        self._config = llm_config or LLMConfig(model="gemini-2.5-flash")
        self._chat = chat
        self._log = conversation_log
        self._max_iter = max_iterations
        self._plan_attempts = plan_attempts
        self._retry_delay = retry_delay_seconds
        self._llm_timeout = llm_timeout_seconds
        self._turn_timeout = turn_timeout_seconds
        self._history_limit = history_limit
        self._sleep = sleep

    # ─────────────────────────────────────────────────────────────────────────
    # Public
    # ─────────────────────────────────────────────────────────────────────────

    async def process_message(self, message: InboundMessage) -> Reply:
        """Process one inbound message and return the reply to send."""
        return (await self.run_turn(message)).reply

    async def respond(self, message: InboundMessage) -> TurnResult:
        """run_turn() and then deliver the reply through the wired ChatClient."""
        result = await self.run_turn(message)
        if self._chat is not None:
            try:
                await deliver_reply(self._chat, message.chat_id, result.reply, sleep=self._sleep)
            except Exception as e:
                log.error("orchestrator.delivery_failed", chat_id=message.chat_id, error=str(e))
        return result

    async def run_turn(self, message: InboundMessage) -> TurnResult:
        bind_conversation(message.chat_id, message.user_id)
        t0 = time.monotonic()
        run = _Run(
            message=message,
            context=ToolContext(
                chat_id=message.chat_id,
                user_id=message.user_id,
                user_message=message.text,
                affect_scope=self._affect.scope_for(message.chat_id),
            ),
        )
        log.info("orchestrator.turn_start", user_message=message.text[:120])

        try:
            run.history = await self._load_history(message.chat_id)
            await self._persist_user(message)
            try:
                if self._turn_timeout:
                    reply = await asyncio.wait_for(self._loop(run), timeout=self._turn_timeout)
                else:
                    reply = await self._loop(run)
                status = TurnStatus.MAX_ITERATIONS if run.exhausted else TurnStatus.OK
            except ProviderUnavailableError as e:
                log.error("orchestrator.provider_unavailable", total_keys=e.total)
                status, reply = TurnStatus.UNAVAILABLE, replies.unavailable()
            except MalformedOutputError as e:
                log.error("orchestrator.malformed_output", error=str(e), state=run.state.value)
                status, reply = TurnStatus.MALFORMED, replies.confused()
            except LLMError as e:
                if is_throttling_error(e):
                    log.error("orchestrator.throttled_out", error=str(e))
                    status, reply = TurnStatus.UNAVAILABLE, replies.unavailable()
                else:
                    log.error("orchestrator.llm_failed", error=str(e), error_type=type(e).__name__)
                    status, reply = TurnStatus.ERROR, replies.error()
            except asyncio.TimeoutError:
                log.error("orchestrator.turn_timeout", timeout_s=self._turn_timeout)
                status, reply = TurnStatus.ERROR, replies.error()
            except asyncio.CancelledError:
                log.info("orchestrator.turn_cancelled", state=run.state.value)
                raise
            except Exception as e:
                log.error("orchestrator.turn_error", error=str(e),
                          error_type=type(e).__name__, exc_info=True)
                status, reply = TurnStatus.ERROR, replies.error()

            run.state = LoopState.DONE
            await self._persist_reply(message.chat_id, reply)
            result = TurnResult(
                status=status,
                reply=reply,
                iterations=run.iterations,
                tool_calls=run.tool_calls,
                duration_ms=round((time.monotonic() - t0) * 1000, 1),
            )
            log.info(
                "orchestrator.turn_done",
                status=status.value,
                iterations=run.iterations,
                tool_calls=run.tool_calls,
                ms=result.duration_ms,
            )
            return result
        finally:
            clear_conversation()

    # ─────────────────────────────────────────────────────────────────────────
    # Loop
    # ─────────────────────────────────────────────────────────────────────────

    async def _loop(self, run: _Run) -> Reply:
        if run.history:
            replayed = run.transcript.add_history(run.history)
            log.debug("orchestrator.history", turns=replayed)
        run.transcript.add_user(run.message.text)

        for iteration in range(self._max_iter):
            run.state = LoopState.PLANNING
            run.iterations = iteration + 1
            mood = await self._affect.mood_summary(run.context.affect_scope)

            plan: PlanStep = await self._call_structured(
                run,
                self._ctx.planning_instruction(mood),
                PLAN_SCHEMA,
                parse_plan,
            )
            run.transcript.add_model(plan.model_dump(mode="json"))
            log.info(
                "orchestrator.plan",
                iteration=run.iterations,
                needs_tools=plan.needs_tools,
                tools=[c.name for c in plan.tools_to_call],
            )

            if not plan.needs_tools:
                return await self._finalize(run)

            run.state = LoopState.EXECUTING_TOOLS
            if not plan.tools_to_call:
                log.debug("orchestrator.empty_tool_list", iteration=run.iterations)
                continue
            results = await self._execute_tools(plan.tools_to_call, run.context)
            run.tool_calls += len(results)
            for result in results:
                run.transcript.add_tool_result(result.name, result.content, result.success)

        log.warning("orchestrator.max_iter_reached", iterations=self._max_iter)
        run.exhausted = True
        return replies.overloaded()

    async def _finalize(self, run: _Run) -> Reply:
        run.state = LoopState.FINALIZING
        mood = await self._affect.mood_summary(run.context.affect_scope)
        structured: StructuredReply = await self._call_structured(
            run,
            self._ctx.final_instruction(mood),
            REPLY_SCHEMA,
            parse_reply,
        )
        return structured.to_reply()

    async def _execute_tools(self, calls: list[ToolCall], context: ToolContext) -> list[ToolResult]:
        """
        Read-only batches run concurrently; anything with a side effect makes
        the whole batch sequential. Results keep declaration order either way.
        """
        if all_read_only([c.name for c in calls]):
            log.debug("orchestrator.tools_parallel", count=len(calls))
            return list(await asyncio.gather(
                *(self._dispatcher.dispatch(call, context) for call in calls)
            ))

        results: list[ToolResult] = []
        for call in calls:
            results.append(await self._dispatcher.dispatch(call, context))
        return results

    # ─────────────────────────────────────────────────────────────────────────
    # Model calls
    # ─────────────────────────────────────────────────────────────────────────

    async def _call_structured(
        self,
        run: _Run,
        system_instruction: str,
        schema: ResponseSchema,
        parse: Callable[[Optional[str]], T],
    ) -> T:
        """
        One schema-constrained model call with a bounded retry.

        Malformed output and transient provider errors are tried at most
        plan_attempts times with a fixed delay between tries. Throttling that
        outlasted the pool's own retries and an empty pool are raised at once.
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self._plan_attempts + 1):
            self._typing(run.message.chat_id)
            try:
                response = await self._generate(run, system_instruction, schema)
                return parse(response.content)
            except ProviderUnavailableError:
                raise
            except MalformedOutputError as e:
                last_error = e
                log.warning("orchestrator.malformed", state=run.state.value,
                            attempt=attempt, error=str(e)[:200])
            except LLMError as e:
                if is_throttling_error(e):
                    raise
                last_error = e
                log.warning("orchestrator.llm_error", state=run.state.value, attempt=attempt,
                            error=str(e), error_type=type(e).__name__)

            if attempt < self._plan_attempts:
                await self._sleep(self._retry_delay)

        assert last_error is not None
        raise last_error

    async def _generate(self, run: _Run, system_instruction: str, schema: ResponseSchema):
        call = self._llm.generate(
            run.transcript.to_messages(),
            self._config,
            system_instruction=system_instruction,
            response_schema=schema,
        )
        if not self._llm_timeout:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self._llm_timeout)
        except asyncio.TimeoutError as e:
            raise LLMTimeoutError(
                f"Model call did not finish within {self._llm_timeout}s"
            ) from e

    def _typing(self, chat_id: str) -> None:
        if self._chat is None:
            return
        fire_and_forget(self._chat.send_typing_indicator(chat_id), name="typing_indicator")

    # ─────────────────────────────────────────────────────────────────────────
    # Persistence
    # ─────────────────────────────────────────────────────────────────────────

    async def _load_history(self, chat_id: str) -> list[dict[str, Any]]:
        """Earlier messages of this chat, read before the new one is stored."""
        if self._log is None or self._history_limit == 0:
            return []
        try:
            return await self._log.recent(chat_id, limit=self._history_limit)
        except Exception as e:
            log.warning("orchestrator.history_failed", error=str(e))
            return []

    async def _persist_user(self, message: InboundMessage) -> None:

        if self._log is None:
            return
        try:
            await self._log.record_user_message(message)
        except Exception as e:
            log.warning("orchestrator.persist_failed", sender="user", error=str(e))

    async def _persist_reply(self, chat_id: str, reply: Reply) -> None:
        if self._log is None:
            return
        try:
            await self._log.record_reply(chat_id, reply)
        except Exception as e:
            log.warning("orchestrator.persist_failed", sender="bot", error=str(e))

    # ─────────────────────────────────────────────────────────────────────────
    # Factory
    # ─────────────────────────────────────────────────────────────────────────

    @classmethod
    def from_settings(
        cls,
        settings,
        llm: BaseLLMClient,
        dispatcher: ToolDispatcher,
        affect: AffectService,
        *,
        chat: Optional[ChatClient] = None,
        conversation_log: Optional[ConversationLog] = None,
    ) -> "Orchestrator":
        """Create an Orchestrator from the maybot Settings object."""
        llm_config = LLMConfig(
            model=settings.llm.model,
            temperature=settings.llm.temperature,
            max_tokens=settings.llm.max_tokens,
            timeout_seconds=settings.llm.timeout_seconds,
        )
        return cls(
            llm,
            dispatcher,
            affect,
            ContextBuilder.from_settings(settings),
            llm_config=llm_config,
            chat=chat,
            conversation_log=conversation_log,
            max_iterations=settings.agent.max_iterations,
            plan_attempts=settings.agent.plan_attempts,
            retry_delay_seconds=settings.agent.retry_delay_seconds,
            turn_timeout_seconds=settings.agent.turn_timeout_seconds,
            history_limit=settings.agent.history_limit,
        )

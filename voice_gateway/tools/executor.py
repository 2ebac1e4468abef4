"""
Tool executor: runs the one function call a turn may produce.

Dispatch parses arguments, drops calls already seen in this turn, tells the
client a tool is running, executes the handler (behind the idempotency
guard for external tools), records the result, and then routes the rest
of the turn by the tool's category. The per-turn dedupe set is cleared when
the outermost dispatch of a turn finishes, so follow-up turns triggered by
a tool cannot loop on the same call.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from voice_gateway.logging_context import get_conversation_logger
from voice_gateway.prompts.prompt_templates import (
    build_generic_confirmation_prompt,
    build_search_results_prompt,
    build_silent_action_prompt,
    build_tool_error_followup_prompt,
    deterministic_confirmation,
)
from voice_gateway.schemas.session_schema import Session, Speaker
from voice_gateway.services.llm import ChatSession, FunctionCall
from voice_gateway.services.store import DocumentStore
from voice_gateway.services.webhooks import WebhookPoster
from voice_gateway.tools.context import ToolContext
from voice_gateway.tools.idempotency import IdempotencyGuard, idempotency_key
from voice_gateway.tools.registry import (
    SILENT_CATEGORIES,
    ToolCategory,
    ToolExecutionError,
    ToolRegistry,
    ToolResult,
    ToolSpec,
)
from voice_gateway.utils import canonical_json, parse_tool_args

if TYPE_CHECKING:
    from voice_gateway.conversation.client_channel import ClientChannel
    from voice_gateway.conversation.dialogue_engine import DialogueEngine
    from voice_gateway.conversation.pause_coordinator import PauseCoordinator
    from voice_gateway.conversation.supervision import SupervisionChannel
    from voice_gateway.conversation.transcript_store import TranscriptStore

logger = get_conversation_logger(__name__)


class ToolExecutor:
    """Executes and routes model-requested tool calls for one session."""

    def __init__(
        self,
        session: Session,
        engine: "DialogueEngine",
        chat: ChatSession,
        client: "ClientChannel",
        registry: ToolRegistry,
        pause: "PauseCoordinator",
        store: DocumentStore,
        webhooks: WebhookPoster,
        guard: IdempotencyGuard,
        transcripts: "TranscriptStore",
        supervision: "SupervisionChannel",
    ) -> None:
        self._session = session
        self._engine = engine
        self._chat = chat
        self._client = client
        self._registry = registry
        self._pause = pause
        self._store = store
        self._webhooks = webhooks
        self._guard = guard
        self._transcripts = transcripts
        self._supervision = supervision
        self._depth = 0

    async def dispatch(
        self, call: FunctionCall, response_id: Optional[str] = None, had_text: bool = False
    ) -> None:
        session = self._session
        self._depth += 1
        try:
            args = parse_tool_args(call.args)
            dedupe_key = f"{call.name}:{canonical_json(args)}"
            if dedupe_key in session.turn_tool_keys:
                logger.info("Repeated call to '%s' in this turn ignored", call.name)
                return
            session.turn_tool_keys.add(dedupe_key)
            await self._dispatch(call, args, response_id, had_text)
        finally:
            self._depth -= 1
            if self._depth == 0:
                session.turn_tool_keys.clear()

    async def _dispatch(
        self, call: FunctionCall, args: dict[str, Any], response_id: Optional[str], had_text: bool
    ) -> None:
        spec = self._registry.get(call.name)
        responded = False
        try:
            await self._client.send(
                "tool_execution_start",
                toolName=call.name,
                actionType=spec.action_type_for(args) if spec else "unknown",
                actionDetails={
                    "args": args,
                    "suppressAutoMessage": spec is not None and spec.category in SILENT_CATEGORIES,
                },
            )

            if spec is None:
                logger.warning("Model requested unregistered tool '%s'", call.name)
                result = ToolResult.error(f"Tool '{call.name}' is not available.")
                await self._client.send("tool_execution_end", toolName=call.name, success=False)
            else:
                result = await self._execute(spec, call, args, response_id)
                await self._client.send(
                    "tool_execution_end", toolName=call.name, success=result.ok
                )

            await self._record(call, args, result)
            await self._send_function_response(call, result)
            responded = True
            await self._route(spec, call, args, result, had_text)
        except Exception:
            logger.exception("Tool dispatch failed for '%s'", call.name)
            await self._recover(call, responded)

    async def _execute(
        self, spec: ToolSpec, call: FunctionCall, args: dict[str, Any], response_id: Optional[str]
    ) -> ToolResult:
        ctx = ToolContext(
            session=self._session,
            client=self._client,
            store=self._store,
            webhooks=self._webhooks,
            pause=self._pause,
            call=call,
            response_id=response_id,
        )
        if not spec.external:
            return await self._run_handler(spec, ctx, args)

        ctx.idempotency_key = idempotency_key(self._session, response_id, call)
        duplicate = await self._guard.claim(ctx.idempotency_key, spec.name)
        if duplicate is not None:
            return duplicate
        result = await self._run_handler(spec, ctx, args)
        await self._guard.record(ctx.idempotency_key, result)
        return result

    @staticmethod
    async def _run_handler(spec: ToolSpec, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        try:
            return await spec.handler(ctx, args)
        except ToolExecutionError as exc:
            return ToolResult.error(str(exc))

    async def _record(self, call: FunctionCall, args: dict[str, Any], result: ToolResult) -> None:
        session = self._session
        summary = f"{call.name}({canonical_json(args)}) -> {result.status.value}"
        session.append_turn(Speaker.TOOL_EXECUTION, summary)
        await self._transcripts.persist(session)
        self._supervision.report_turn(
            session,
            {
                "type": "tool_execution",
                "toolName": call.name,
                "args": args,
                "result": result.to_function_response(),
            },
        )

    async def _route(
        self,
        spec: Optional[ToolSpec],
        call: FunctionCall,
        args: dict[str, Any],
        result: ToolResult,
        had_text: bool,
    ) -> None:
        if spec is None or not result.ok:
            self._chat.inject(build_tool_error_followup_prompt())
            await self._engine.run_turn("")
            return

        if spec.category == ToolCategory.DATA_RETURNING:
            query = str(result.payload.get("query") or args.get("query") or call.name)
            prompt = build_search_results_prompt(query, result.payload.get("results") or [])
            await self._engine.run_turn(prompt)
        elif spec.category == ToolCategory.SILENT_COMPLETE:
            if had_text:
                return
            self._chat.inject(build_silent_action_prompt(call.name, result.payload))
            await self._engine.run_turn("")
        elif spec.category == ToolCategory.SILENT_PARTIAL:
            return
        else:
            language = self._session.bot.language if self._session.bot else "en"
            template = deterministic_confirmation(spec.action_type_for(args), language)
            if template is not None:
                await self._engine.commit_final(template, supervised=False)
                return
            self._chat.inject(build_generic_confirmation_prompt(call.name, success=True))
            await self._engine.run_turn("")

    async def _send_function_response(self, call: FunctionCall, result: ToolResult) -> None:
        signature, self._session.thought_signature = self._session.thought_signature, None
        await self._chat.send_function_response(
            call.name,
            result.to_function_response(),
            call_id=call.call_id,
            thought_signature=signature,
        )

    async def _recover(self, call: FunctionCall, responded: bool) -> None:
        """Report a synthetic failure and still try to keep the conversation going.

        The model gets at most one function response per call, so nothing is
        sent when the real result already went out.
        """
        if not responded:
            failure = ToolResult.error("The action failed unexpectedly.")
            try:
                await self._send_function_response(call, failure)
            except Exception:
                logger.warning("Could not report tool failure to the model", exc_info=True)
            await self._client.send("tool_execution_end", toolName=call.name, success=False)
        self._chat.inject(build_tool_error_followup_prompt())
        await self._engine.run_turn("")

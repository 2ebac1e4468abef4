"""Tests for tool dispatch, category routing, and duplicate suppression."""

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from voice_gateway.prompts.prompt_templates import (
    EMAIL_CONFIRMATIONS,
    build_generic_confirmation_prompt,
    build_tool_error_followup_prompt,
)
from voice_gateway.schemas.session_schema import Speaker
from voice_gateway.services.llm import ToolDeclaration
from voice_gateway.tools.executor import ToolExecutor
from voice_gateway.tools.registry import (
    ToolCategory,
    ToolExecutionError,
    ToolResult,
    ToolSpec,
)
from tests.conftest import TEST_CONFIG, call, say, send_text, start_conversation

BOTS = TEST_CONFIG.store.bots_collection


async def enable_only(store, *tools: str, **fields) -> None:
    await store.set(BOTS, "bot-sales", {"tools": list(tools), **fields}, merge=True)


async def _explode(ctx, args):
    raise RuntimeError("handler bug")


async def _refuse(ctx, args):
    raise ToolExecutionError("calendar is full")


FLAKY_TOOL = ToolSpec(
    declaration=ToolDeclaration(name="flaky_tool", description="Always crashes."),
    handler=_explode,
    category=ToolCategory.CONFIRMATION_NEEDED,
)

REFUSING_TOOL = ToolSpec(
    declaration=ToolDeclaration(name="refusing_tool", description="Always refuses."),
    handler=_refuse,
    category=ToolCategory.CONFIRMATION_NEEDED,
)


class TestSchedulingFlow:
    @pytest.mark.asyncio
    async def test_booking_widget_opens_and_session_pauses(self, handler, transport, chat):
        conversation_id = await start_conversation(handler)
        chat.script(
            say("Claro, abro el calendario.")
            + [call("schedule_appointment", {"notes": "limpieza"}, call_id="c-1")]
        )
        transport.clear()

        await send_text(handler, "Quiero una cita")

        assert transport.types() == [
            "assistant_delta",
            "assistant_final",
            "tool_execution_start",
            "schedule_appointment_action",
            "tool_execution_end",
        ]
        start = transport.of_type("tool_execution_start")[0]
        assert start["toolName"] == "schedule_appointment"
        assert start["actionType"] == "schedule_appointment"
        assert start["actionDetails"] == {"args": {"notes": "limpieza"}, "suppressAutoMessage": True}
        assert transport.of_type("tool_execution_end")[0]["success"] is True

        url = transport.of_type("schedule_appointment_action")[0]["url"]
        query = parse_qs(urlsplit(url).query)
        assert url.startswith("https://cal.test/sonrisa/limpieza?")
        assert query["metadata[conversationId]"] == [conversation_id]
        assert query["name"] == ["Lucia"]
        assert query["email"] == ["lucia@example.com"]
        assert query["notes"] == ["limpieza"]

        assert handler.session.paused is True
        assert len(chat.messages) == 2
        assert chat.function_responses[0]["response"]["status"] == "success"

    @pytest.mark.asyncio
    async def test_input_while_widget_open_is_dropped(self, handler, transport, chat):
        await start_conversation(handler)
        chat.script([call("schedule_appointment", {})])
        await send_text(handler, "Quiero una cita")
        transport.clear()
        model_calls = len(chat.messages)
        turns = len(handler.session.transcript)

        await send_text(handler, "¿hola?")

        assert transport.messages == []
        assert len(chat.messages) == model_calls
        assert len(handler.session.transcript) == turns

    @pytest.mark.asyncio
    async def test_missing_calendar_is_an_error(self, handler, transport, chat, store):
        await store.set(BOTS, "bot-sales", {"calendarUrl": None}, merge=True)
        await start_conversation(handler)
        chat.script([call("schedule_appointment", {})])
        transport.clear()

        await send_text(handler, "Quiero una cita")

        assert transport.of_type("schedule_appointment_action") == []
        assert transport.of_type("tool_execution_end")[0]["success"] is False
        assert handler.session.paused is False
        assert chat.injected[-1] == build_tool_error_followup_prompt()


class TestCategoryRouting:
    @pytest.mark.asyncio
    async def test_search_results_narrated(self, handler, transport, chat):
        await start_conversation(handler)
        chat.script(
            [call("search_knowledge_base", {"query": "limpieza dental"})],
            say("La limpieza incluye revisión y pulido."),
        )
        transport.clear()

        await send_text(handler, "¿Qué incluye la limpieza?")

        start = transport.of_type("tool_execution_start")[0]
        assert start["actionType"] == "search"
        assert start["actionDetails"]["suppressAutoMessage"] is False
        narration = chat.messages[-1][0]
        assert "Limpieza dental: Incluye revision y pulido." in narration
        assert transport.of_type("assistant_final")[-1]["text"] == (
            "La limpieza incluye revisión y pulido."
        )
        results = chat.function_responses[0]["response"]["results"]
        assert results[0]["title"] == "Limpieza dental"

    @pytest.mark.asyncio
    async def test_silent_tool_without_preamble_gets_one_sentence(self, handler, transport, chat):
        await start_conversation(handler)
        chat.script([call("navigate_to_section", {"section": "Pricing"})], say("Aquí tienes los precios."))
        transport.clear()

        await send_text(handler, "precios")

        assert transport.of_type("navigation_action") == [
            {"type": "navigation_action", "target": "pricing"}
        ]
        assert "navigate_to_section" in chat.injected[-1]
        assert chat.messages[-1] == [chat.injected[-1]]
        assert transport.of_type("assistant_final")[-1]["text"] == "Aquí tienes los precios."

    @pytest.mark.asyncio
    async def test_silent_tool_with_preamble_ends_turn(self, handler, transport, chat):
        await start_conversation(handler)
        chat.script(say("Te llevo.") + [call("navigate_to_section", {"section": "contact"})])

        await send_text(handler, "contacto")

        assert len(chat.messages) == 2
        assert chat.injected == []

    @pytest.mark.asyncio
    async def test_email_order_uses_fixed_confirmation(self, handler, transport, chat, webhooks):
        await start_conversation(handler)
        chat.script([call("execute_order", {"order": "Enviar un correo a Juan con el presupuesto"})])
        transport.clear()

        await send_text(handler, "Mándale el presupuesto a Juan por correo")

        start = transport.of_type("tool_execution_start")[0]
        assert start["actionType"] == "send_email"
        assert start["actionDetails"]["suppressAutoMessage"] is False
        assert transport.of_type("assistant_final")[-1]["text"] == EMAIL_CONFIRMATIONS["es"]
        assert len(chat.messages) == 2

        url, payload = webhooks.posts[0]
        assert url == "https://automation.test/orders"
        assert payload["order"] == "Enviar un correo a Juan con el presupuesto"
        assert payload["idempotencyKey"]

    @pytest.mark.asyncio
    async def test_fixed_confirmation_is_not_reported(self, handler, chat, webhooks):
        await start_conversation(handler)
        chat.script([call("execute_order", {"order": "send an email to Juan"})])

        await send_text(handler, "email Juan")

        turns = [r["payload"]["turn"] for r in webhooks.labelled("supervision report")]
        assert [t["type"] for t in turns] == ["assistant", "tool_execution"]

    @pytest.mark.asyncio
    async def test_other_order_asks_model_to_confirm(self, handler, transport, chat):
        await start_conversation(handler)
        chat.script([call("execute_order", {"order": "Registrar una reserva de mesa"})], say("Hecho."))
        transport.clear()

        await send_text(handler, "Reserva una mesa")

        assert transport.of_type("tool_execution_start")[0]["actionType"] == "order"
        assert chat.injected[-1] == build_generic_confirmation_prompt("execute_order", success=True)
        assert transport.of_type("assistant_final")[-1]["text"] == "Hecho."

    @pytest.mark.asyncio
    async def test_order_webhook_failure_reported_as_error(self, handler, transport, chat, webhooks):
        await start_conversation(handler)
        webhooks.error = httpx.ConnectError("automation down")
        chat.script([call("execute_order", {"order": "Registrar pedido"})])
        transport.clear()

        await send_text(handler, "Haz el pedido")

        assert transport.of_type("tool_execution_end")[0]["success"] is False
        assert chat.function_responses[0]["response"]["status"] == "error"
        assert chat.injected[-1] == build_tool_error_followup_prompt()


class TestErrorsAndRecovery:
    @pytest.mark.asyncio
    async def test_unknown_tool(self, handler, transport, chat):
        await start_conversation(handler)
        chat.script([call("delete_account", {"confirm": True})])
        transport.clear()

        await send_text(handler, "borra mi cuenta")

        start = transport.of_type("tool_execution_start")[0]
        assert start["actionType"] == "unknown"
        assert transport.of_type("tool_execution_end") == [
            {"type": "tool_execution_end", "toolName": "delete_account", "success": False}
        ]
        assert chat.function_responses[0]["response"]["status"] == "error"
        assert chat.injected[-1] == build_tool_error_followup_prompt()
        assert transport.types()[-1] == "assistant_final"

    @pytest.mark.asyncio
    async def test_malformed_arguments_become_empty(self, handler, transport, chat):
        await start_conversation(handler)
        chat.script([call("navigate_to_section", '{"section": ')])
        transport.clear()

        await send_text(handler, "llévame")

        start = transport.of_type("tool_execution_start")[0]
        assert start["actionDetails"]["args"] == {}
        assert transport.of_type("tool_execution_end")[0]["success"] is False

    @pytest.mark.asyncio
    async def test_unknown_section_lists_available(self, handler, chat):
        await start_conversation(handler)
        chat.script([call("navigate_to_section", {"section": "careers"})])

        await send_text(handler, "empleo")

        response = chat.function_responses[0]["response"]
        assert response["status"] == "error"
        assert response["available"] == ["pricing", "contact"]

    @pytest.mark.asyncio
    async def test_handler_crash_recovers(self, handler, transport, chat, services, store):
        services.tools.register(FLAKY_TOOL)
        await enable_only(store, "flaky_tool")
        await start_conversation(handler)
        chat.script([call("flaky_tool", {})], say("Lo siento, algo falló."))
        transport.clear()

        await send_text(handler, "hazlo")

        assert transport.types() == [
            "tool_execution_start",
            "tool_execution_end",
            "assistant_delta",
            "assistant_final",
        ]
        assert transport.of_type("tool_execution_end")[0]["success"] is False
        assert chat.function_responses[0]["response"]["status"] == "error"
        assert chat.injected[-1] == build_tool_error_followup_prompt()

    @pytest.mark.asyncio
    async def test_tool_execution_error_becomes_error_result(self, handler, chat, services, store):
        services.tools.register(REFUSING_TOOL)
        await enable_only(store, "refusing_tool")
        await start_conversation(handler)
        chat.script([call("refusing_tool", {})])

        await send_text(handler, "reserva")

        response = chat.function_responses[0]["response"]
        assert response == {"status": "error", "error": "calendar is full"}

    @pytest.mark.asyncio
    async def test_failure_after_response_sends_no_second_response(
        self, handler, transport, chat, monkeypatch
    ):
        async def _broken_route(self, *args, **kwargs):
            raise RuntimeError("follow-up failed")

        monkeypatch.setattr(ToolExecutor, "_route", _broken_route)
        await start_conversation(handler)
        chat.script([call("navigate_to_section", {"section": "pricing"})])
        transport.clear()

        await send_text(handler, "precios")

        assert [r["response"]["status"] for r in chat.function_responses] == ["success"]
        assert transport.of_type("tool_execution_end") == [
            {"type": "tool_execution_end", "toolName": "navigate_to_section", "success": True}
        ]
        assert chat.injected[-1] == build_tool_error_followup_prompt()
        assert transport.types()[-1] == "assistant_final"


class TestRecording:
    @pytest.mark.asyncio
    async def test_tool_turn_recorded(self, handler, chat):
        await start_conversation(handler)
        chat.script(say("Mira.") + [call("navigate_to_section", {"section": "pricing"})])

        await send_text(handler, "precios")

        speakers = [t.speaker for t in handler.session.transcript]
        assert speakers == [
            Speaker.ASSISTANT,
            Speaker.USER_TEXT,
            Speaker.ASSISTANT,
            Speaker.TOOL_EXECUTION,
        ]
        assert handler.session.transcript[-1].text == (
            'navigate_to_section({"section":"pricing"}) -> success'
        )


class TestDuplicateSuppression:
    @pytest.mark.asyncio
    async def test_repeated_call_within_turn_ignored(self, handler, transport, chat):
        await start_conversation(handler)
        search = {"query": "limpieza"}
        chat.script(
            [call("search_knowledge_base", search)],
            [call("search_knowledge_base", search)],
        )
        transport.clear()

        await send_text(handler, "limpieza")

        assert len(transport.of_type("tool_execution_start")) == 1
        assert len(chat.function_responses) == 1
        assert handler.session.turn_tool_keys == set()

    @pytest.mark.asyncio
    async def test_same_call_in_next_turn_runs_again(self, handler, transport, chat):
        await start_conversation(handler)
        nav = {"section": "pricing"}
        chat.script(
            say("Mira.") + [call("navigate_to_section", nav)],
            say("Otra vez.") + [call("navigate_to_section", nav)],
        )
        transport.clear()

        await send_text(handler, "precios")
        await send_text(handler, "precios otra vez")

        assert len(transport.of_type("navigation_action")) == 2

    @pytest.mark.asyncio
    async def test_replayed_external_call_executes_once(self, handler, transport, chat, webhooks):
        await start_conversation(handler)
        order = {"order": "Enviar correo de bienvenida"}
        replay = [call("execute_order", order, call_id="call-7", response_id="resp-3")]
        chat.script(replay, replay)

        await send_text(handler, "Envía el correo")
        await send_text(handler, "Envía el correo")

        assert len(webhooks.posts) == 1
        second = chat.function_responses[1]["response"]
        assert second["status"] == "success"
        assert second["duplicate"] is True
        assert second["order"] == "Enviar correo de bienvenida"

    @pytest.mark.asyncio
    async def test_distinct_calls_each_execute(self, handler, chat, webhooks):
        await start_conversation(handler)
        order = {"order": "Enviar correo de bienvenida"}
        chat.script(
            [call("execute_order", order, call_id="call-1", response_id="resp-1")],
            [call("execute_order", order, call_id="call-2", response_id="resp-2")],
        )

        await send_text(handler, "Envía el correo")
        await send_text(handler, "Envíalo otra vez")

        assert len(webhooks.posts) == 2

"""
External order dispatch: hands a free-form order to the bot's automation webhook.

The automation backend does not report what kind of action it performed,
so ``classify_order`` guesses from the order text. The guess only picks a
UI label and a confirmation template.
"""

import logging
from typing import Any

import httpx

from voice_gateway.services.llm import ToolDeclaration
from voice_gateway.tools.context import ToolContext
from voice_gateway.tools.registry import ToolCategory, ToolResult, ToolSpec

logger = logging.getLogger(__name__)

EMAIL_KEYWORDS = ("email", "e-mail", "correo")


def classify_order(args: dict[str, Any]) -> str:
    text = f"{args.get('order') or ''} {args.get('details') or ''}".lower()
    if any(keyword in text for keyword in EMAIL_KEYWORDS):
        return "send_email"
    return "order"


async def execute_order(ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
    order = str(args.get("order") or "").strip()
    if not order:
        return ToolResult.error("No order was given.")
    bot = ctx.session.bot
    if bot is None or not bot.order_webhook_url:
        return ToolResult.error("No automation endpoint is configured for this assistant.")

    payload = {
        "conversationId": ctx.session.conversation_id,
        "botId": ctx.session.bot_id,
        "userId": ctx.session.user_id,
        "userName": ctx.session.user_name,
        "userEmail": ctx.session.user_email,
        "order": order,
        "details": args.get("details"),
        "idempotencyKey": ctx.idempotency_key,
    }
    try:
        response = await ctx.webhooks.post_json(bot.order_webhook_url, payload)
    except httpx.HTTPError as exc:
        logger.warning("Order webhook failed: %s", exc)
        return ToolResult.error("The automation service did not accept the order.")

    logger.info("Order dispatched for conversation %s", ctx.session.conversation_id)
    return ToolResult.success(order=order, response=response)


ORDER_TOOL = ToolSpec(
    declaration=ToolDeclaration(
        name="execute_order",
        description=(
            "Carry out an action for the user through the business's automation "
            "service, for example sending an email or registering a request."
        ),
        parameters={
            "type": "object",
            "properties": {
                "order": {"type": "string", "description": "What should be done."},
                "details": {"type": "string", "description": "Extra details, recipients, or data."},
            },
            "required": ["order"],
        },
    ),
    handler=execute_order,
    category=ToolCategory.CONFIRMATION_NEEDED,
    action_type="order",
    external=True,
    action_classifier=classify_order,
)

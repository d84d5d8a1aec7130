"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot instance. Reminders carry inline buttons so the user's
reaction feeds behavioral learning.
"""

from __future__ import annotations

import logging

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup

from src.data.models import ReminderContent

logger = logging.getLogger(__name__)


def reminder_keyboard(plan_id: str, snooze_options: list[dict]) -> InlineKeyboardMarkup:
    """Taken / Skip on the first row, one snooze button per option below."""
    rows = [[
        InlineKeyboardButton("✅ Taken", callback_data=f"taken:{plan_id}"),
        InlineKeyboardButton("Skip", callback_data=f"skip:{plan_id}"),
    ]]
    snooze_row = [
        InlineKeyboardButton(
            f"⏰ {opt['label']}", callback_data=f"snooze:{plan_id}:{opt['minutes']}",
        )
        for opt in snooze_options
    ]
    if snooze_row:
        rows.append(snooze_row)
    return InlineKeyboardMarkup(rows)


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, user_id: int, text: str) -> None:
        await self._bot.send_message(chat_id=user_id, text=text)

    async def send_reminder(
        self, user_id: int, content: ReminderContent, snooze_options: list[dict],
    ) -> None:
        await self._bot.send_message(
            chat_id=user_id,
            text=f"💊 *{content.title}*\n{content.body}",
            parse_mode="Markdown",
            reply_markup=reminder_keyboard(content.plan_id, snooze_options),
        )
        logger.debug("Reminder for plan %s sent to %d", content.plan_id, user_id)

# -*- coding: utf-8 -*-
"""Processing topic: receipt polls and order completion."""

import logging
from typing import Optional, Sequence

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

import utils
from dispatcher import poll_option
from state import Action, PendingPoll, PipelineStore
from utils import safe_send_message

logger = logging.getLogger(__name__)


def completed_keyboard(poll_id: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[InlineKeyboardButton("📊 CRM", callback_data=f"crm_update|{poll_id}")]])


def completed_text(poll: PendingPoll) -> str:
    return f"🎉 COMPLETED!\n\n<<{poll.supplier}>>\n{poll_option(poll.item, poll.quantity)}\n•\n\n{poll.date_stamp}"


async def handle_poll_answer(store: PipelineStore, poll_id: str, option_ids: Sequence[int], user: Optional[dict] = None) -> Optional[PendingPoll]:
    """
    Poll answer from anyone in the group.

    Unknown polls are not ours and are ignored. A retracted vote (no options)
    changes nothing. The first answer with at least one option completes the
    order; the record is gone afterwards, so further answers are no-ops.

    Returns the completed PendingPoll, or None when nothing happened.
    """
    poll = store.find(PendingPoll.KIND, poll_id)
    if poll is None:
        logger.info(f"Poll answer for untracked poll {poll_id} ignored")
        return None

    if not option_ids:
        logger.info(f"Empty answer for poll {poll_id} - order stays open")
        return None

    await safe_send_message(
        utils.GROUP_CHAT_ID,
        completed_text(poll),
        completed_keyboard(poll_id),
        message_thread_id=utils.TOPICS["completed"],
    )

    store.advance(PendingPoll.KIND, poll_id, Action.CONFIRM)
    answered_by = (user or {}).get("username") or (user or {}).get("first_name") or "Unknown"
    logger.info(f"Order completed for {poll.item.name} x{poll.quantity} from {poll.supplier} (confirmed by {answered_by})")
    return poll

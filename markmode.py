# -*- coding: utf-8 -*-
# markmode.py - Mark mode: collect several items and send them as one bulk order

import logging
from typing import Dict, List, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup
from telegram.helpers import escape_markdown

import utils
import catalog
from catalog import Item
from errors import ExternalCallFailure
from browse import items_keyboard, category_items_keyboard, mark_mode_keyboard, start_keyboard
from state import PipelineStore
from utils import safe_send_message, safe_edit_message, safe_edit_reply_markup

logger = logging.getLogger(__name__)

DESTINATIONS = ("manager", "dispatcher")
NOTHING_MARKED = "No items marked for ordering."


def destination_keyboard(user_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("📋 Manager", callback_data=f"send_order|manager|{user_id}"),
        InlineKeyboardButton("📦 Dispatcher", callback_data=f"send_order|dispatcher|{user_id}"),
    ]])


def group_by_supplier(items: List[Item]) -> Dict[str, List[Item]]:
    """Group items under their resolved supplier, keeping marking order."""
    groups: Dict[str, List[Item]] = {}
    for item in items:
        groups.setdefault(catalog.resolve_supplier(item), []).append(item)
    return groups


def bulk_summary_text(items: List[Item], destination: str, stamp: str) -> str:
    """Markdown summary: one <<Supplier>> block per supplier, date stamp at the end.

    Supplier and item names are escaped for Markdown.
    """
    text = f"📋 **Bulk Order Summary** ({destination.upper()}):\n\n"
    for supplier, supplier_items in group_by_supplier(items).items():
        text += f"**<<{escape_markdown(supplier, version=1)}>>**\n"
        for item in supplier_items:
            line = f"{item.name} {item.default_quantity} {item.measure_unit}"
            text += f"{escape_markdown(line, version=1)}\n"
        text += "•\n\n"
    return text + stamp


async def enable(store: PipelineStore, chat_id: int, user_id: int):
    store.mark_session(user_id).enable()
    logger.info(f"Mark mode enabled for user {user_id}")
    return await safe_send_message(
        chat_id,
        "🔹 Mark Mode Enabled!\nClick items to mark them for bulk ordering.",
        mark_mode_keyboard(),
    )


async def disable(store: PipelineStore, chat_id: int, user_id: int):
    store.mark_session(user_id).disable()
    logger.info(f"Mark mode disabled for user {user_id}")
    return await safe_send_message(chat_id, "🔹 Mark Mode Disabled", start_keyboard())


def _view_category(view: Optional[str]) -> Optional[int]:
    if view and view.startswith("c") and view[1:].isdigit():
        return int(view[1:])
    return None


async def toggle_mark(store: PipelineStore, user_id: int, sku: str, marked: bool,
                      chat_id: Optional[int] = None, message_id: Optional[int] = None,
                      view: Optional[str] = None) -> str:
    """
    mark_item / unmark_item buttons.

    Returns the text for the callback answer. When the pressed message is
    known its keyboard is rebuilt so the 🔹 prefix follows the selection:
    the category list named by view (c<category_id>), otherwise the item's
    sub-category.
    """
    if not store.in_mark_mode(user_id):
        return "Mark mode is off"

    item = catalog.get_item(sku)
    if item is None:
        return "Item not found"

    session = store.mark_session(user_id)
    if marked:
        session.mark(item)
    else:
        session.unmark(sku)

    if chat_id is not None and message_id is not None:
        category_id = _view_category(view)
        if category_id is not None:
            markup = category_items_keyboard(category_id, session)
        else:
            siblings = catalog.list_items(sub_category=item.sub_category) if item.sub_category else [item]
            markup = items_keyboard(siblings, session)
        await safe_edit_reply_markup(chat_id, message_id, markup)

    return f"{'Marked' if marked else 'Unmarked'}: {item.name}"


async def prompt_destination(store: PipelineStore, chat_id: int, user_id: int):
    """Place Order: ask where the bulk order goes"""
    if not store.in_mark_mode(user_id):
        return None
    if not store.mark_session(user_id).items:
        return await safe_send_message(chat_id, NOTHING_MARKED)
    return await safe_send_message(chat_id, "Send order to:", destination_keyboard(user_id))


async def place_bulk_order(store: PipelineStore, user_id: int, destination: str,
                           chat_id: Optional[int] = None, message_id: Optional[int] = None) -> Optional[str]:
    """
    Post the summary of a user's marked items to the manager or dispatcher topic.

    The session is cleared and mark mode switched off only after the summary
    was sent. Bulk orders are not tracked per item.

    Returns the summary text, or None when nothing was marked.
    """
    if destination not in DESTINATIONS:
        raise ValueError(f"Unknown bulk order destination: {destination}")

    session = store.marks.get(user_id)
    if session is None or not session.items:
        return None

    summary = bulk_summary_text(list(session.items.values()), destination, utils.date_stamp())
    await safe_send_message(
        utils.GROUP_CHAT_ID,
        summary,
        message_thread_id=utils.TOPICS[destination],
        parse_mode="Markdown",
    )

    count = len(session.items)
    session.disable()
    logger.info(f"Bulk order of {count} items from user {user_id} sent to {destination}")

    if chat_id is not None and message_id is not None:
        try:
            await safe_edit_message(chat_id, message_id, f"✅ Bulk order sent to {destination.upper()}!")
        except ExternalCallFailure as e:
            logger.error(f"Bulk order confirmation for user {user_id} not shown: {e}")
    return summary

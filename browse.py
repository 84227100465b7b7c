# -*- coding: utf-8 -*-
"""User menus: catalog browsing, order lists, custom requests and inline search."""

import os
import logging
from typing import Dict, List, Optional

from telegram import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    InlineQueryResultArticle,
    InputTextMessageContent,
    ReplyKeyboardMarkup,
    ReplyKeyboardRemove,
)

import utils
import catalog
from catalog import Item, Category
from state import MarkSession, PipelineStore
from utils import safe_send_message, safe_edit_message, safe_forward_message, safe_answer_inline_query

logger = logging.getLogger(__name__)

WELCOME_TEXT = "⚡ Welcome to KALI Easy Order!\nSelect a main category:"
CUSTOM_PROMPT = "Send your custom item request (photo, voice, or text) as a reply to this message. It will be sent to managers for approval."
HELP_TEXT = (
    "🏪 KALI Easy Order Help\n\n"
    "• Select category → Choose item → Manager approval → Dispatcher review → Processing confirmation → Completed\n"
    "• Mark Mode collects several items and sends them as one bulk order\n"
    "• Use @botname <search> for inline search\n"
    "• Custom lets you send requests to managers"
)
BACK_TO_MAIN = "🔙 Back to Main"
MARK_PREFIX = "🔹 "
INLINE_RESULTS_LIMIT = 50

LIST_FILES = {
    "Today List": ("todaylist.csv", "📋 Today's List"),
    "Custom List": ("customlist.csv", "📝 Custom List"),
}


# --- KEYBOARDS ---

def start_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        [["Kitchen", "Bar"], ["Mark Mode"], ["Today List", "Custom List"], ["Categories", "Search", "Custom"]],
        resize_keyboard=True,
    )


def mark_mode_keyboard() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup([["Kitchen", "Bar"], ["Place Order"], ["Stop Mark Mode"]], resize_keyboard=True)


def sub_category_keyboard(lane: str, mark_mode: bool) -> ReplyKeyboardMarkup:
    """Lane sub-categories in rows of 3"""
    sub_categories = catalog.list_sub_categories(lane)
    rows = [sub_categories[i:i + 3] for i in range(0, len(sub_categories), 3)]
    rows.append([BACK_TO_MAIN])
    if mark_mode:
        rows.append(["Place Order"])
        rows.append(["Stop Mark Mode"])
    return ReplyKeyboardMarkup(rows, resize_keyboard=True)


def items_keyboard(items: List[Item], session: Optional[MarkSession] = None, view: Optional[str] = None) -> InlineKeyboardMarkup:
    """One button per item: add_to_order normally, mark/unmark while in mark mode.

    view (e.g. c30001 for a category list) rides along in mark callbacks so
    the same list can be rebuilt after a toggle.
    """
    suffix = f"|{view}" if view else ""
    rows = []
    for item in items:
        if session is not None and session.enabled:
            if session.is_marked(item.sku):
                rows.append([InlineKeyboardButton(f"{MARK_PREFIX}{item.name}", callback_data=f"unmark_item|{item.sku}{suffix}")])
            else:
                rows.append([InlineKeyboardButton(item.name, callback_data=f"mark_item|{item.sku}{suffix}")])
        else:
            rows.append([InlineKeyboardButton(item.name, callback_data=f"add_to_order|{item.sku}")])
    return InlineKeyboardMarkup(rows)


def categories_keyboard(categories: List[Category]) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(c.name, callback_data=f"show_items|{c.category_id}")]
        for c in categories
    ])


def lane_order_keyboard(store: PipelineStore) -> ReplyKeyboardMarkup:
    """Reply keyboard with per-lane counters of items added since start"""
    return ReplyKeyboardMarkup(
        [[f"Kitch Order ({store.lane_total('kitchen')})", f"Bar Order ({store.lane_total('bar')})", "Custom"],
         ["Go Back", "Categories", "Search"]],
        resize_keyboard=True,
    )


# --- MAIN MENU ---

async def show_start(chat_id: int):
    return await safe_send_message(chat_id, WELCOME_TEXT, start_keyboard())


async def show_help(chat_id: int):
    return await safe_send_message(chat_id, HELP_TEXT, start_keyboard())


async def show_lane(store: PipelineStore, chat_id: int, user_id: int, lane: str):
    """Kitchen / Bar: sub-category reply keyboard"""
    mark_mode = store.in_mark_mode(user_id)
    suffix = " (Mark Mode)" if mark_mode else ""
    return await safe_send_message(
        chat_id,
        f"Select {lane} sub-category{suffix}:",
        sub_category_keyboard(lane, mark_mode),
    )


def is_sub_category(text: str) -> bool:
    return any(text in catalog.list_sub_categories(lane) for lane in catalog.LANES)


async def show_sub_category(store: PipelineStore, chat_id: int, user_id: int, sub_category: str):
    items = catalog.list_items(sub_category=sub_category)
    session = store.marks.get(user_id)

    if not items:
        keyboard = mark_mode_keyboard() if store.in_mark_mode(user_id) else start_keyboard()
        return await safe_send_message(chat_id, f"No items found for {sub_category}", keyboard)

    return await safe_send_message(chat_id, f"{sub_category.capitalize()} items:", items_keyboard(items, session))


async def back_to_main(store: PipelineStore, chat_id: int, user_id: int):
    """Leaves mark mode too, marked items are dropped."""
    store.mark_session(user_id).disable()
    return await show_start(chat_id)


# --- INLINE CATEGORY BROWSING ---

async def show_categories(chat_id: int, lane: Optional[str] = None, message_id: Optional[int] = None):
    categories = catalog.list_categories(parent=lane)
    title = f"Categories for {lane.capitalize()}:" if lane else "All Categories:"
    keyboard = categories_keyboard(categories)
    if message_id:
        return await safe_edit_message(chat_id, message_id, title, keyboard)
    return await safe_send_message(chat_id, title, keyboard)


def category_items_keyboard(category_id: int, session: Optional[MarkSession] = None) -> InlineKeyboardMarkup:
    """Items of one category plus the Go Back row"""
    items = catalog.list_items(category_id=category_id)
    rows = list(items_keyboard(items, session, view=f"c{category_id}").inline_keyboard)
    rows.append((InlineKeyboardButton("⬅️ Go Back", callback_data=f"go_back_to_categories|{category_id}"),))
    return InlineKeyboardMarkup(rows)


async def show_category_items(store: PipelineStore, chat_id: int, message_id: int, user_id: int, category_id: int):
    category = catalog.get_category(category_id)
    title = f"{category.name}:" if category else "Items:"
    return await safe_edit_message(chat_id, message_id, title, category_items_keyboard(category_id, store.marks.get(user_id)))


async def go_back_to_categories(chat_id: int, message_id: int, category_id: int):
    category = catalog.get_category(category_id)
    lane = category.parent if category and category.parent else "kitchen"
    return await show_categories(chat_id, lane, message_id)


# --- LISTS AND TOPIC LINKS ---

async def show_list_file(chat_id: int, button_text: str):
    filename, title = LIST_FILES[button_text]
    path = catalog.data_path(filename)
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            content = f.read().strip()
        if content:
            return await safe_send_message(chat_id, f"{title}:\n{content}")
    return await safe_send_message(chat_id, f"{title} is empty or not found.")


async def show_lane_link(chat_id: int, lane: str):
    """Kitch Order (n) / Bar Order (n): link button into the lane topic"""
    url = utils.thread_link(utils.GROUP_CHAT_ID, utils.TOPICS[lane])
    name = lane.capitalize()
    return await safe_send_message(
        chat_id,
        f"Tap below to open {name} Topic:",
        InlineKeyboardMarkup([[InlineKeyboardButton(f"Go to {name} Topic", url=url)]]),
    )


async def show_order_counters(store: PipelineStore, chat_id: int):
    return await safe_send_message(chat_id, "Shared order so far:", lane_order_keyboard(store))


# --- CUSTOM REQUESTS ---

async def prompt_custom(chat_id: int):
    return await safe_send_message(chat_id, CUSTOM_PROMPT, ReplyKeyboardRemove())


def is_custom_reply(message: Dict) -> bool:
    replied = message.get("reply_to_message") or {}
    return "custom item request" in (replied.get("text") or "")


def custom_keyboard(request_message_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("✅ Approve Custom", callback_data=f"approve_custom|{request_message_id}"),
        InlineKeyboardButton("❌ Reject Custom", callback_data=f"reject_custom|{request_message_id}"),
    ]])


async def forward_custom_request(chat_id: int, message_id: int, from_user: Dict):
    """Forward the user's text/photo/voice to the manager topic with approve/reject buttons."""
    requester = from_user.get("username") or from_user.get("first_name") or "Unknown"
    manager_topic = utils.TOPICS["manager"]

    await safe_forward_message(utils.GROUP_CHAT_ID, chat_id, message_id, message_thread_id=manager_topic)
    await safe_send_message(
        utils.GROUP_CHAT_ID,
        f"📋 Custom Item Approval Required from {requester}",
        custom_keyboard(message_id),
        message_thread_id=manager_topic,
    )
    logger.info(f"Custom item request {message_id} from {requester} forwarded to manager topic")
    return await safe_send_message(chat_id, "✅ Custom request sent to managers for approval.", start_keyboard())


async def resolve_custom(chat_id: int, message_id: int, approved: bool):
    label = "✅ Custom item request APPROVED" if approved else "❌ Custom item request REJECTED"
    return await safe_edit_message(chat_id, message_id, label)


# --- INLINE SEARCH ---

def search_results(query: str) -> List[InlineQueryResultArticle]:
    """Items whose name contains the query, each with an Add to order button"""
    items = catalog.list_items(query=query.strip() or None)
    results = []
    for item in items[:INLINE_RESULTS_LIMIT]:
        description = " - ".join(part for part in (item.category_name, item.sub_category) if part)
        results.append(InlineQueryResultArticle(
            id=item.sku,
            title=item.name,
            description=description or None,
            input_message_content=InputTextMessageContent(f"🛒 {item.name}"),
            reply_markup=InlineKeyboardMarkup([[InlineKeyboardButton("Add to order", callback_data=f"add_to_order|{item.sku}")]]),
        ))
    return results


async def answer_inline_search(inline_query_id: str, query: str):
    results = search_results(query)
    logger.info(f"Inline search {query!r}: {len(results)} results")
    await safe_answer_inline_query(inline_query_id, results, cache_time=0)


async def prompt_search(chat_id: int):
    return await safe_send_message(
        chat_id,
        "Type @botname <item> in any chat to search instantly, or tap below to start inline search.",
        InlineKeyboardMarkup([[InlineKeyboardButton("🔎 Search", switch_inline_query_current_chat="")]]),
    )

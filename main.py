# -*- coding: utf-8 -*-
# KALI Easy Order Bot - webhook server, update router and startup

# =============================================================================
# MAIN WORKFLOW OVERVIEW
# =============================================================================
# User taps an item → manager topic (+1 / ✅ / ❌) → kitchen/bar topic post and
# dispatcher topic (✅ / ❌) → receipt poll in processing topic → first answer
# → completed topic
#
# CODE ORGANIZATION:
# 1. manager.py    - Order submission and manager approval
# 2. dispatcher.py - Dispatcher review and receipt polls
# 3. processing.py - Poll answers and completion
# 4. browse.py     - Menus, lists, custom requests, inline search
# 5. markmode.py   - Bulk ordering
# 6. admin.py      - Catalog file management in the admin chat
# 7. state.py      - Pipeline records and the store that owns them
#
# Updates arrive on POST /webhook (WEBHOOK_URL set) or through long polling.
# Either way they are handled one at a time on the background event loop.
# =============================================================================

import os
import re
import sys
import time
import asyncio
import logging
import threading
import requests
import concurrent.futures
from collections import deque
from typing import Any, Dict, Optional
from flask import Flask, request, jsonify
from telegram.error import TelegramError

import utils
import catalog
import redis_state
import manager
import dispatcher
import processing
import browse
import markmode
import admin
from errors import OrderBotError, ExternalCallFailure, ConfigError
from state import PipelineStore
from utils import (
    loop, run_async, get_bot, now, is_admin,
    safe_send_message, safe_answer_callback,
)

logger = logging.getLogger(__name__)

ALLOWED_UPDATES = ["message", "callback_query", "inline_query", "poll_answer"]
LANE_BUTTONS = {"Kitchen": "kitchen", "Bar": "bar"}
LANE_ORDER_PATTERN = re.compile(r"^(Kitch|Bar) Order \(\d+\)$")

app = Flask(__name__)

# Single pipeline store shared by every handler
STORE = PipelineStore(persist=redis_state.is_enabled())

# Serializes update handling on the event loop (created inside the loop)
_update_lock: Optional[asyncio.Lock] = None

# Recently handled update ids; Telegram redelivers updates that timed out
SEEN_UPDATES_LIMIT = 1000
_seen_updates: deque = deque(maxlen=SEEN_UPDATES_LIMIT)


def _int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _display_name(user: Dict[str, Any]) -> str:
    return user.get("username") or user.get("first_name") or "Unknown"


# =============================================================================
# CALLBACK QUERIES
# =============================================================================
# Callback data is "action|arg|arg". Pipeline buttons carry the SKU (and the
# quantity for +1 / ✅) but records are looked up by the pressed message id.

async def handle_callback(store: PipelineStore, cq: Dict[str, Any]) -> Optional[str]:
    """Run a button press. Returns the text for the callback answer."""
    data = (cq.get("data") or "").split("|")
    action = data[0]
    msg = cq.get("message") or {}
    chat_id = (msg.get("chat") or {}).get("id")
    message_id = msg.get("message_id")
    user = cq.get("from") or {}
    user_id = user.get("id")

    logger.info(f"Processing callback: {cq.get('data')} from {_display_name(user)} (message {message_id})")

    # --- ORDER PIPELINE ---
    if action == "add_to_order":
        item = catalog.get_item(data[1]) if len(data) > 1 else None
        if item is None:
            return "Item not found"
        await manager.submit_item(store, item, _display_name(user))
        return "✅ Sent for manager approval"

    if action == "qty_add":
        record = await manager.handle_increase(store, message_id, _int(data[2]) if len(data) > 2 else None)
        return f"Quantity: {record.quantity}"

    if action == "approve_item":
        dispatch = await manager.handle_approve(store, message_id, _int(data[2]) if len(data) > 2 else None)
        return f"✅ Approved {dispatch.item.name} x{dispatch.quantity}"

    if action == "cancel_item":
        record = await manager.handle_reject(store, message_id)
        return f"❌ Rejected {record.item.name}"

    if action == "dispatch_approve":
        poll = await dispatcher.handle_dispatch_approve(store, message_id)
        return f"✅ Dispatched, poll sent for {poll.item.name}"

    if action == "dispatch_reject":
        await dispatcher.handle_dispatch_reject(store, message_id)
        return "❌ Dispatch rejected"

    if action == "crm_update":
        return "📊 CRM update is not implemented yet"

    # --- MARK MODE ---
    if action in ("mark_item", "unmark_item"):
        if len(data) < 2:
            return "Item not found"
        view = data[2] if len(data) > 2 else None
        return await markmode.toggle_mark(store, user_id, data[1], action == "mark_item", chat_id, message_id, view)

    if action == "send_order":
        destination = data[1] if len(data) > 1 else ""
        if destination not in markmode.DESTINATIONS:
            return "Unknown destination"
        owner_id = _int(data[2]) if len(data) > 2 else user_id
        summary = await markmode.place_bulk_order(store, owner_id, destination, chat_id, message_id)
        if summary is None:
            return markmode.NOTHING_MARKED
        return f"Order sent to {destination}"

    # --- BROWSING ---
    if action == "show_items":
        if len(data) < 2:
            return None
        await browse.show_category_items(store, chat_id, message_id, user_id, _int(data[1]))
        return None

    if action == "go_back_to_categories":
        await browse.go_back_to_categories(chat_id, message_id, _int(data[1]) if len(data) > 1 else None)
        return None

    if action in ("approve_custom", "reject_custom"):
        approved = action == "approve_custom"
        await browse.resolve_custom(chat_id, message_id, approved)
        return "✅ Custom item approved" if approved else "❌ Custom item rejected"

    # --- ADMIN ---
    if action.startswith("admin_"):
        if not is_admin(chat_id, user_id):
            return "Access denied"
        return await handle_admin_callback(store, chat_id, user_id, action, data[1:])

    logger.warning(f"Unknown callback action: {action}")
    return None


async def handle_admin_callback(store: PipelineStore, chat_id: int, user_id: int, action: str, args) -> Optional[str]:
    if action == "admin_edit_item":
        await admin.show_edit_categories(chat_id)
    elif action == "admin_edit_files":
        await admin.show_files_menu(chat_id)
    elif action == "admin_restore_menu":
        await admin.show_restore_menu(chat_id)
    elif action == "admin_dump" and args and args[0] in admin.EDITABLE_FILES:
        await admin.dump_file(chat_id, args[0])
    elif action == "admin_restore" and args and args[0] in admin.EDITABLE_FILES:
        await admin.restore_file(chat_id, args[0])
        return "Restored"
    elif action == "admin_edit_cat" and args:
        await admin.show_edit_items(chat_id, _int(args[0]))
    elif action == "admin_edit_item_json" and args:
        await admin.show_item_json(chat_id, args[0])
    elif action == "admin_item_action" and len(args) >= 2:
        await admin.handle_item_action(store, chat_id, user_id, args[0], args[1])
    elif action == "admin_assign" and len(args) >= 2:
        await admin.handle_assign(chat_id, args[0], args[1])
        return f"Assigned to {args[1]}"
    else:
        logger.warning(f"Unknown admin action: {action} {args}")
    return None


# =============================================================================
# MESSAGES
# =============================================================================

async def handle_message(store: PipelineStore, msg: Dict[str, Any]) -> None:
    chat_id = (msg.get("chat") or {}).get("id")
    user = msg.get("from") or {}
    user_id = user.get("id")
    text = (msg.get("text") or "").strip()
    admin_chat = is_admin(chat_id, user_id)

    if msg.get("document") and admin_chat:
        await admin.handle_document(chat_id, msg["document"])
        return

    if browse.is_custom_reply(msg):
        await browse.forward_custom_request(chat_id, msg["message_id"], user)
        return

    if not text:
        return

    if text.startswith("/"):
        command = text.split()[0].split("@")[0].lower()
        if command == "/start":
            await browse.show_start(chat_id)
        elif command == "/help":
            await browse.show_help(chat_id)
        elif command == "/admin":
            if admin_chat:
                await admin.show_menu(chat_id)
            else:
                await safe_send_message(chat_id, "Access denied. Only allowed in admin chat.")
        return

    if text in LANE_BUTTONS:
        await browse.show_lane(store, chat_id, user_id, LANE_BUTTONS[text])
    elif text == "Mark Mode":
        await markmode.enable(store, chat_id, user_id)
    elif text == "Stop Mark Mode":
        await markmode.disable(store, chat_id, user_id)
    elif text == "Place Order":
        await markmode.prompt_destination(store, chat_id, user_id)
    elif text in browse.LIST_FILES:
        await browse.show_list_file(chat_id, text)
    elif text == "Categories":
        await browse.show_order_counters(store, chat_id)
        await browse.show_categories(chat_id)
    elif text == "Go Back":
        await browse.show_categories(chat_id)
    elif text == "Search":
        await browse.prompt_search(chat_id)
    elif text == "Custom":
        await browse.prompt_custom(chat_id)
    elif text == browse.BACK_TO_MAIN:
        await browse.back_to_main(store, chat_id, user_id)
    elif LANE_ORDER_PATTERN.match(text):
        await browse.show_lane_link(chat_id, "kitchen" if text.startswith("Kitch") else "bar")
    elif admin_chat and await admin.handle_admin_text(store, chat_id, user_id, text):
        pass
    elif browse.is_sub_category(text):
        await browse.show_sub_category(store, chat_id, user_id, text)


# =============================================================================
# UPDATE ROUTER
# =============================================================================

async def process_update(store: PipelineStore, upd: Dict[str, Any]) -> None:
    """
    Route one raw Telegram update.

    OrderBotError (stale button, bad admin payload, failed Telegram call) is
    reported back to the chat or button and does not escape. Anything else
    propagates to the caller.
    """
    if "callback_query" in upd:
        cq = upd["callback_query"]
        try:
            answer = await handle_callback(store, cq)
        except OrderBotError as e:
            logger.warning(f"Callback {cq.get('data')} failed: {e}")
            answer = e.user_message
        await safe_answer_callback(cq["id"], answer)

    elif "poll_answer" in upd:
        pa = upd["poll_answer"]
        try:
            await processing.handle_poll_answer(store, pa.get("poll_id"), pa.get("option_ids") or [], pa.get("user"))
        except OrderBotError as e:
            logger.error(f"Poll answer for {pa.get('poll_id')} failed: {e}")

    elif "inline_query" in upd:
        iq = upd["inline_query"]
        await browse.answer_inline_search(iq["id"], iq.get("query") or "")

    elif "message" in upd:
        msg = upd["message"]
        try:
            await handle_message(store, msg)
        except OrderBotError as e:
            logger.warning(f"Message handling failed: {e}")
            chat_id = (msg.get("chat") or {}).get("id")
            try:
                await safe_send_message(chat_id, f"❌ {e.user_message}")
            except ExternalCallFailure:
                logger.error(f"Could not report error to chat {chat_id}")


async def handle_update(upd: Dict[str, Any]) -> None:
    """process_update on STORE, one update at a time."""
    global _update_lock
    update_id = upd.get("update_id")
    if update_id is not None:
        if update_id in _seen_updates:
            logger.info(f"Skipping redelivered update {update_id}")
            return
        _seen_updates.append(update_id)
    if _update_lock is None:
        _update_lock = asyncio.Lock()
    async with _update_lock:
        await process_update(STORE, upd)


# --- WEBHOOK ENDPOINTS ---
@app.route("/", methods=["GET"])
def health_check():
    """Health check endpoint for monitoring"""
    return jsonify({
        "status": "healthy",
        "service": "kali-order-bot",
        "pending": STORE.counts(),
        "timestamp": now().isoformat()
    }), 200


@app.route("/webhook", methods=["POST"])
def telegram_webhook():
    """Handle Telegram webhooks"""
    try:
        upd = request.get_json(force=True, silent=True)
        if not upd:
            return "OK"

        logger.info(f"=== INCOMING UPDATE {upd.get('update_id')} === {', '.join(k for k in upd if k != 'update_id')}")

        future = run_async(handle_update(upd))
        try:
            future.result(timeout=utils.UPDATE_TIMEOUT)
        except concurrent.futures.TimeoutError:
            logger.warning(f"Update {upd.get('update_id')} still running after {utils.UPDATE_TIMEOUT}s, acknowledging")
        return "OK"

    except Exception as e:
        logger.error(f"Telegram webhook error: {e}")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STARTUP
# =============================================================================

def register_webhook(attempts: int = 3, delay: float = 2.0) -> bool:
    """Point Telegram at WEBHOOK_URL/webhook. Returns True on success."""
    url = f"{utils.WEBHOOK_URL}/webhook"
    for attempt in range(1, attempts + 1):
        try:
            response = requests.post(
                f"https://api.telegram.org/bot{utils.BOT_TOKEN}/setWebhook",
                json={
                    "url": url,
                    "drop_pending_updates": True,
                    "max_connections": 40,
                    "allowed_updates": ALLOWED_UPDATES,
                },
                timeout=10
            )
            if response.ok and response.json().get("ok"):
                logger.info(f"Webhook set to {url}")
                return True
            logger.error(f"setWebhook attempt {attempt} rejected: {response.text}")
        except requests.RequestException as e:
            logger.error(f"setWebhook attempt {attempt} failed: {e}")
        if attempt < attempts:
            time.sleep(delay)

    logger.error(f"Failed to set webhook after {attempts} attempts - check BOT_TOKEN and WEBHOOK_URL")
    return False


async def poll_updates() -> None:
    """Long polling for development; feeds the same router as the webhook."""
    bot = get_bot()
    await bot.initialize()
    await bot.delete_webhook(drop_pending_updates=False)
    logger.info("Polling for updates...")

    offset = None
    while True:
        try:
            updates = await bot.get_updates(offset=offset, timeout=30, allowed_updates=ALLOWED_UPDATES)
        except TelegramError as e:
            logger.error(f"get_updates failed: {e}")
            await asyncio.sleep(5)
            continue

        for update in updates:
            offset = update.update_id + 1
            try:
                await handle_update(update.to_dict())
            except Exception as e:
                logger.error(f"Update {update.update_id} failed: {e}")


# --- APPLICATION ENTRY POINT ---
if __name__ == "__main__":
    try:
        utils.require_config()
    except ConfigError as e:
        logger.critical(f"Startup aborted: {e}")
        sys.exit(1)

    restored = STORE.restore()
    if restored:
        logger.info(f"Resuming with {restored} in-flight records")

    if not utils.WEBHOOK_URL:
        logger.info("WEBHOOK_URL not set - starting in polling mode")
        asyncio.set_event_loop(loop)
        loop.run_until_complete(poll_updates())
        sys.exit(0)

    port = int(os.environ.get("PORT", 10000))
    logger.info(f"Starting KALI Easy Order bot on port {port}")

    # Start the event loop in a separate thread
    def run_event_loop():
        asyncio.set_event_loop(loop)
        loop.run_forever()

    loop_thread = threading.Thread(target=run_event_loop)
    loop_thread.daemon = True
    loop_thread.start()

    run_async(get_bot().initialize()).result(timeout=30)
    register_webhook()

    app.run(host="0.0.0.0", port=port, debug=False)

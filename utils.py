# -*- coding: utf-8 -*-
# utils.py - Shared configuration, logging and Telegram helpers for the order bot

import os
import json
import asyncio
import logging
from datetime import datetime
from zoneinfo import ZoneInfo
from typing import Dict, Optional
from telegram import Bot
from telegram.error import TelegramError, TimedOut, NetworkError, RetryAfter, Forbidden, BadRequest, ChatMigrated
from telegram.request import HTTPXRequest

from errors import ConfigError, ExternalCallFailure

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _int_env(name: str) -> Optional[int]:
    value = os.environ.get(name, "").strip()
    try:
        return int(value) if value else None
    except ValueError:
        logger.error(f"{name} must be an integer, got {value!r}")
        return None


# --- ENVIRONMENT VARIABLES ---
BOT_TOKEN = os.environ.get("BOT_TOKEN", "")
GROUP_CHAT_ID = _int_env("GROUP_CHAT_ID")
ADMIN_CHAT_ID = _int_env("ADMIN_CHAT_ID")
ADMIN_USER_ID = _int_env("ADMIN_USER_ID")
DATA_DIR = os.environ.get("DATA_DIR", "./data")
WEBHOOK_URL = os.environ.get("WEBHOOK_URL", "").rstrip("/")
TIMEZONE = ZoneInfo(os.environ.get("TIMEZONE", "UTC"))
UPDATE_TIMEOUT = float(os.environ.get("UPDATE_TIMEOUT", "60"))

# --- FORUM TOPICS ---
# Every stage of the order pipeline posts into its own topic of GROUP_CHAT_ID
DEFAULT_TOPICS: Dict[str, int] = {
    "kitchen": 5,
    "bar": 14,
    "manager": 120,
    "dispatcher": 118,
    "processing": 190,
    "completed": 192,
    "admin": 188,
}
TOPICS: Dict[str, int] = dict(DEFAULT_TOPICS)
TOPICS.update({k: int(v) for k, v in json.loads(os.environ.get("TOPIC_MAP", "{}")).items()})

# Kitchen/bar split when an item has no explicit source
BAR_CATEGORY_THRESHOLD = 30000


def require_config() -> None:
    """Abort startup when a required setting is missing."""
    missing = []
    if not BOT_TOKEN:
        missing.append("BOT_TOKEN")
    if GROUP_CHAT_ID is None:
        missing.append("GROUP_CHAT_ID")
    if missing:
        logger.critical(f"Missing required configuration: {', '.join(missing)}")
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")
    logger.info(f"Configuration loaded: group={GROUP_CHAT_ID}, topics={TOPICS}, data_dir={DATA_DIR}")


def now() -> datetime:
    """Get current time in the venue timezone."""
    return datetime.now(TIMEZONE)


def date_stamp(moment: Optional[datetime] = None) -> str:
    """Short stamp used in dispatch, poll and summary messages: 18.10.26 14:05"""
    return (moment or now()).strftime("%d.%m.%y %H:%M")


def thread_link(chat_id: int, topic_id: int) -> str:
    """Deep link to a forum topic of a supergroup."""
    chat_num = str(chat_id).replace("-100", "", 1)
    return f"https://t.me/c/{chat_num}/{topic_id}"


def is_admin(chat_id: Optional[int], user_id: Optional[int]) -> bool:
    if ADMIN_CHAT_ID is not None and chat_id == ADMIN_CHAT_ID:
        return True
    return ADMIN_USER_ID is not None and user_id == ADMIN_USER_ID


# --- TELEGRAM BOT CONFIGURATION ---
# Bot instance (initialized on first use)
_bot = None


def get_bot():
    """Get or create the Telegram Bot instance."""
    global _bot

    if _bot is None:
        # Configure request with larger pool to prevent pool timeout
        request_cfg = HTTPXRequest(
            connection_pool_size=32,
            pool_timeout=30.0,
            read_timeout=30.0,
            write_timeout=30.0,
            connect_timeout=15.0,
        )
        updates_cfg = HTTPXRequest(read_timeout=40.0, connect_timeout=15.0)
        _bot = Bot(token=BOT_TOKEN, request=request_cfg, get_updates_request=updates_cfg)
    return _bot


def configure(bot_ref) -> None:
    """Replace the bot used by every helper below."""
    global _bot
    _bot = bot_ref


# Event loop for async operations (run in a background thread by main.py)
loop = asyncio.new_event_loop()


def run_async(coro):
    """Schedule a coroutine on the background loop and return its future."""
    return asyncio.run_coroutine_threadsafe(coro, loop)


def get_error_description(error: Exception) -> str:
    """
    Short, human-readable description of a Telegram API error.

    Used in chat replies, where the raw exception text is too noisy.
    """
    if isinstance(error, TimedOut):
        return "Network timeout"
    elif isinstance(error, RetryAfter):
        return f"Rate limit exceeded (retry in {error.retry_after}s)"
    elif isinstance(error, ChatMigrated):
        return "Chat was migrated to supergroup"
    elif isinstance(error, NetworkError) and not isinstance(error, BadRequest):
        return "Network connection lost"
    elif isinstance(error, Forbidden):
        return "Bot blocked or missing permissions"
    elif isinstance(error, BadRequest):
        error_msg = str(error).lower()
        if "chat not found" in error_msg:
            return "Chat not found"
        elif "message thread not found" in error_msg:
            return "Topic not found"
        elif "message is too long" in error_msg:
            return "Message too long"
        elif "message to edit not found" in error_msg:
            return "Message not found"
        return f"Invalid request ({error_msg[:50]})"

    return f"{type(error).__name__}: {str(error)[:50]}"


def _failure(operation: str, error: TelegramError) -> ExternalCallFailure:
    return ExternalCallFailure(operation, error, get_error_description(error))


# --- ASYNC UTILITY FUNCTIONS ---
# Calls that a stage depends on raise ExternalCallFailure so the caller can leave
# its records untouched. Cosmetic calls only log.

async def safe_send_message(chat_id: int, text: str, reply_markup=None, message_thread_id: Optional[int] = None, parse_mode=None):
    """Send message into a chat (or one of its topics)."""
    try:
        return await get_bot().send_message(
            chat_id=chat_id,
            text=text,
            message_thread_id=message_thread_id,
            reply_markup=reply_markup,
            parse_mode=parse_mode,
        )
    except TelegramError as e:
        logger.error(f"Send message to {chat_id}/{message_thread_id} failed: {e}")
        raise _failure("send_message", e) from e


async def safe_edit_message(chat_id: int, message_id: int, text: str, reply_markup=None, parse_mode=None):
    """Edit message text; an unchanged text is not an error."""
    try:
        return await get_bot().edit_message_text(
            text=text,
            chat_id=chat_id,
            message_id=message_id,
            reply_markup=reply_markup,
            parse_mode=parse_mode,
        )
    except BadRequest as e:
        if "message is not modified" in str(e).lower():
            logger.info(f"Message {message_id} already up to date")
            return None
        logger.error(f"Error editing message {message_id}: {e}")
        raise _failure("edit_message_text", e) from e
    except TelegramError as e:
        logger.error(f"Error editing message {message_id}: {e}")
        raise _failure("edit_message_text", e) from e


async def safe_edit_reply_markup(chat_id: int, message_id: int, reply_markup=None):
    """Refresh inline buttons only (best effort)."""
    try:
        await get_bot().edit_message_reply_markup(chat_id=chat_id, message_id=message_id, reply_markup=reply_markup)
    except TelegramError as e:
        logger.warning(f"Could not update keyboard of message {message_id}: {e}")


async def safe_forward_message(chat_id: int, from_chat_id: int, message_id: int, message_thread_id: Optional[int] = None):
    try:
        return await get_bot().forward_message(
            chat_id=chat_id,
            from_chat_id=from_chat_id,
            message_id=message_id,
            message_thread_id=message_thread_id,
        )
    except TelegramError as e:
        logger.error(f"Forward message {message_id} failed: {e}")
        raise _failure("forward_message", e) from e


async def safe_send_poll(chat_id: int, question: str, options, message_thread_id: Optional[int] = None):
    """Send a non-anonymous, multiple-answer poll."""
    try:
        return await get_bot().send_poll(
            chat_id=chat_id,
            question=question,
            options=options,
            is_anonymous=False,
            allows_multiple_answers=True,
            message_thread_id=message_thread_id,
        )
    except TelegramError as e:
        logger.error(f"Send poll to {chat_id}/{message_thread_id} failed: {e}")
        raise _failure("send_poll", e) from e


async def safe_send_document(chat_id: int, content: bytes, filename: str, caption: Optional[str] = None, message_thread_id: Optional[int] = None):
    try:
        return await get_bot().send_document(
            chat_id=chat_id,
            document=content,
            filename=filename,
            caption=caption,
            message_thread_id=message_thread_id,
        )
    except TelegramError as e:
        logger.error(f"Send document {filename} failed: {e}")
        raise _failure("send_document", e) from e


async def safe_answer_callback(callback_query_id: str, text: Optional[str] = None, show_alert: bool = False):
    """Answer a callback query (best effort, the button spinner stops either way after a while)."""
    try:
        await get_bot().answer_callback_query(callback_query_id=callback_query_id, text=text, show_alert=show_alert)
    except TelegramError as e:
        logger.error(f"answer_callback_query error: {e}")


async def safe_answer_inline_query(inline_query_id: str, results, cache_time: int = 0):
    try:
        await get_bot().answer_inline_query(inline_query_id=inline_query_id, results=results, cache_time=cache_time)
    except TelegramError as e:
        logger.error(f"answer_inline_query error: {e}")

# -*- coding: utf-8 -*-
"""Manager topic: order submission and the manager approval stage."""

import logging
from typing import Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

import utils
from catalog import Item, resolve_supplier
from errors import ExternalCallFailure
from state import Action, PendingApproval, PendingDispatch, PipelineStore
from utils import safe_send_message, safe_edit_message

logger = logging.getLogger(__name__)

# =============================================================================
# MANAGER STAGE
# =============================================================================
# WORKFLOW: User taps an item → "<name> <qty>" with +1 / ✅ / ❌ lands in the
# manager topic → +1 bumps the quantity in place → ✅ posts the item into the
# kitchen/bar topic and hands it to the dispatcher topic → ❌ closes it.
# The quantity lives both in the PendingApproval record and in the button
# payloads; the record is authoritative and the buttons are rebuilt from it.
# =============================================================================


def approval_text(item: Item, quantity: int) -> str:
    return f"{item.name} {quantity}"


def approval_keyboard(sku: str, quantity: int) -> InlineKeyboardMarkup:
    """+1 / approve / reject buttons for the manager message"""
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("+1", callback_data=f"qty_add|{sku}|{quantity}"),
        InlineKeyboardButton("✅", callback_data=f"approve_item|{sku}|{quantity}"),
        InlineKeyboardButton("❌", callback_data=f"cancel_item|{sku}"),
    ]])


def dispatch_keyboard(sku: str, origin_message_id: int) -> InlineKeyboardMarkup:
    """Approve / reject buttons for the dispatcher message"""
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("✅ Approve", callback_data=f"dispatch_approve|{sku}|{origin_message_id}"),
        InlineKeyboardButton("❌ Reject", callback_data=f"dispatch_reject|{sku}|{origin_message_id}"),
    ]])


def approved_text(item: Item, quantity: int) -> str:
    return f"✅ APPROVED: {item.name} x{quantity}"


def lane_text(item: Item, quantity: int) -> str:
    label = f"{item.category_name} {item.name}".strip()
    return f"🛒 {label} x{quantity}"


def _check_payload(record: PendingApproval, payload_qty: Optional[int]) -> None:
    if payload_qty is not None and payload_qty != record.quantity:
        logger.warning(
            f"Button quantity {payload_qty} differs from stored quantity {record.quantity} "
            f"for message {record.message_id} - using stored value"
        )


async def submit_item(store: PipelineStore, item: Item, requested_by: str) -> PendingApproval:
    """
    Put a catalog item into the pipeline.

    Posts the approval request into the manager topic and registers a
    PendingApproval under the new message id. Two adds of the same item are
    two independent records.
    """
    lane = item.lane
    quantity = item.quantity

    msg = await safe_send_message(
        utils.GROUP_CHAT_ID,
        approval_text(item, quantity),
        approval_keyboard(item.sku, quantity),
        message_thread_id=utils.TOPICS["manager"],
    )

    record = PendingApproval(
        message_id=msg.message_id,
        item=item,
        topic_id=utils.TOPICS[lane],
        quantity=quantity,
        requested_by=requested_by,
    )
    store.insert(record)
    store.count_lane(lane, item.sku)
    logger.info(f"Item {item.sku} ({item.name}) sent for manager approval by {requested_by}, lane={lane}")
    return record


async def handle_increase(store: PipelineStore, message_id: int, payload_qty: Optional[int] = None) -> PendingApproval:
    """+1 on the manager message: quantity goes up by one, message and buttons are rewritten."""
    record, _ = store.peek(PendingApproval.KIND, message_id, Action.INCREASE)
    _check_payload(record, payload_qty)
    new_qty = record.quantity + 1

    await safe_edit_message(
        utils.GROUP_CHAT_ID,
        message_id,
        approval_text(record.item, new_qty),
        approval_keyboard(record.item.sku, new_qty),
    )

    store.advance(PendingApproval.KIND, message_id, Action.INCREASE)
    record.quantity = new_qty
    store.update(record)
    logger.info(f"Quantity for {record.item.name} (message {message_id}) updated to {new_qty}")
    return record


async def handle_approve(store: PipelineStore, message_id: int, payload_qty: Optional[int] = None) -> PendingDispatch:
    """
    ✅ on the manager message.

    Flow:
    1. Copy of the approval posted into the dispatcher topic with ✅ / ❌
    2. PendingApproval removed, PendingDispatch registered under the new message
    3. Approved line posted into the item's kitchen/bar topic
    4. Manager message turned into "✅ APPROVED: ..." without buttons
    """
    record, _ = store.peek(PendingApproval.KIND, message_id, Action.APPROVE)
    _check_payload(record, payload_qty)
    item, quantity = record.item, record.quantity

    supplier = resolve_supplier(item)
    dispatch_msg = await safe_send_message(
        utils.GROUP_CHAT_ID,
        f"{approved_text(item, quantity)}\n<<{supplier}>>",
        dispatch_keyboard(item.sku, message_id),
        message_thread_id=utils.TOPICS["dispatcher"],
    )

    store.advance(PendingApproval.KIND, message_id, Action.APPROVE)
    dispatch = PendingDispatch(
        message_id=dispatch_msg.message_id,
        item=item,
        quantity=quantity,
        supplier=supplier,
        date_stamp=utils.date_stamp(),
        origin_message_id=message_id,
    )
    store.insert(dispatch)
    logger.info(f"Manager approved {item.name} x{quantity} → dispatcher message {dispatch_msg.message_id} ({supplier})")

    # Order already moved on; a missing lane post is only logged
    try:
        await safe_send_message(utils.GROUP_CHAT_ID, lane_text(item, quantity), message_thread_id=record.topic_id)
    except ExternalCallFailure as e:
        logger.error(f"Approved order {message_id} missing from its {item.lane} topic: {e}")

    try:
        await safe_edit_message(utils.GROUP_CHAT_ID, message_id, approved_text(item, quantity))
    except ExternalCallFailure as e:
        # Order already moved on; the stale buttons answer "record not found"
        logger.error(f"Approved order {message_id} kept its old manager message: {e}")

    return dispatch


async def handle_reject(store: PipelineStore, message_id: int) -> PendingApproval:
    """❌ on the manager message: terminal label, buttons removed, record dropped."""
    record, _ = store.peek(PendingApproval.KIND, message_id, Action.REJECT)

    await safe_edit_message(utils.GROUP_CHAT_ID, message_id, f"❌ REJECTED: {record.item.name}")

    store.advance(PendingApproval.KIND, message_id, Action.REJECT)
    logger.info(f"Manager rejected {record.item.name} (message {message_id})")
    return record

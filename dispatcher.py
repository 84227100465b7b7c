# -*- coding: utf-8 -*-
"""Dispatcher topic: review of manager-approved items."""

import logging

import utils
from catalog import Item
from errors import ExternalCallFailure
from state import Action, PendingDispatch, PendingPoll, PipelineStore
from utils import safe_edit_message, safe_send_poll

logger = logging.getLogger(__name__)


def supplier_block(supplier: str, item: Item, quantity: int, stamp: str) -> str:
    """<<Supplier>> / item line / bullet / stamp, the layout used by supplier orders"""
    return f"<<{supplier}>>\n{item.name} {quantity} {item.measure_unit}\n•\n\n{stamp}"


def poll_question(supplier: str, stamp: str) -> str:
    return f"Confirm receipt of items from {supplier} - {stamp}?"


def poll_option(item: Item, quantity: int) -> str:
    return f"{item.name} ({quantity} {item.measure_unit})"


async def handle_dispatch_approve(store: PipelineStore, message_id: int) -> PendingPoll:
    """
    ✅ on the dispatcher message.

    Posts a receipt poll (one option, multiple answers, not anonymous) into the
    processing topic, registers it as PendingPoll and closes the dispatcher
    message with a "DISPATCHED" label.
    """
    dispatch, _ = store.peek(PendingDispatch.KIND, message_id, Action.DISPATCH_APPROVE)
    item = dispatch.item

    poll_msg = await safe_send_poll(
        utils.GROUP_CHAT_ID,
        poll_question(dispatch.supplier, dispatch.date_stamp),
        [poll_option(item, dispatch.quantity)],
        message_thread_id=utils.TOPICS["processing"],
    )

    store.advance(PendingDispatch.KIND, message_id, Action.DISPATCH_APPROVE)
    poll = PendingPoll(
        poll_id=poll_msg.poll.id,
        message_id=poll_msg.message_id,
        item=item,
        quantity=dispatch.quantity,
        supplier=dispatch.supplier,
        date_stamp=dispatch.date_stamp,
    )
    store.insert(poll)
    logger.info(f"Dispatched {item.name} x{dispatch.quantity} from {dispatch.supplier}, poll {poll.poll_id}")

    try:
        await safe_edit_message(
            utils.GROUP_CHAT_ID,
            message_id,
            "✅ DISPATCHED: " + supplier_block(dispatch.supplier, item, dispatch.quantity, dispatch.date_stamp),
        )
    except ExternalCallFailure as e:
        logger.error(f"Dispatched order {message_id} kept its old dispatcher message: {e}")

    return poll


async def handle_dispatch_reject(store: PipelineStore, message_id: int) -> PendingDispatch:
    """❌ on the dispatcher message: terminal label and no successor record."""
    dispatch, _ = store.peek(PendingDispatch.KIND, message_id, Action.DISPATCH_REJECT)

    await safe_edit_message(
        utils.GROUP_CHAT_ID,
        message_id,
        "❌ DISPATCH REJECTED: " + supplier_block(dispatch.supplier, dispatch.item, dispatch.quantity, dispatch.date_stamp),
    )

    store.advance(PendingDispatch.KIND, message_id, Action.DISPATCH_REJECT)
    logger.info(f"Dispatcher rejected {dispatch.item.name} x{dispatch.quantity} (message {message_id})")
    return dispatch

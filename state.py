# -*- coding: utf-8 -*-
# state.py - Order pipeline records, stage machine and the store that owns them

# =============================================================================
# ORDER PIPELINE OVERVIEW
# =============================================================================
# Add to order → manager topic (+1 / ✅ / ❌) → dispatcher topic (✅ / ❌)
# → processing topic poll → first answer → completed topic
#
# Every stage keeps exactly one record, keyed by the message (or poll) that
# carries its buttons:
#   approval  - manager message id     → PendingApproval
#   dispatch  - dispatcher message id  → PendingDispatch
#   poll      - poll id                → PendingPoll
# Advancing a stage removes the record from its table; the handler then
# inserts the successor record (if any) into the next table.
# =============================================================================

import logging
from collections import Counter
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Tuple

import utils
import redis_state
from catalog import Item
from errors import RecordNotFound, InvalidTransition

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    REJECTED = "rejected"
    PENDING_DISPATCH = "pending_dispatch"
    DISPATCH_REJECTED = "dispatch_rejected"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"


class Action(str, Enum):
    INCREASE = "qty_add"
    APPROVE = "approve_item"
    REJECT = "cancel_item"
    DISPATCH_APPROVE = "dispatch_approve"
    DISPATCH_REJECT = "dispatch_reject"
    CONFIRM = "confirm_receipt"


# (current stage, action) → next stage. Anything not listed is rejected.
TRANSITIONS: Dict[Tuple[Stage, Action], Stage] = {
    (Stage.PENDING_APPROVAL, Action.INCREASE): Stage.PENDING_APPROVAL,
    (Stage.PENDING_APPROVAL, Action.APPROVE): Stage.PENDING_DISPATCH,
    (Stage.PENDING_APPROVAL, Action.REJECT): Stage.REJECTED,
    (Stage.PENDING_DISPATCH, Action.DISPATCH_APPROVE): Stage.DISPATCHED,
    (Stage.PENDING_DISPATCH, Action.DISPATCH_REJECT): Stage.DISPATCH_REJECTED,
    (Stage.DISPATCHED, Action.CONFIRM): Stage.COMPLETED,
}

TERMINAL_STAGES = {Stage.REJECTED, Stage.DISPATCH_REJECTED, Stage.COMPLETED}


def next_stage(stage: Stage, action: Action) -> Stage:
    try:
        return TRANSITIONS[(stage, action)]
    except KeyError:
        raise InvalidTransition(stage, action)


# --- RECORDS ---

@dataclass
class PendingApproval:
    """Manager-stage record: item waiting for approval in the manager topic."""

    KIND: ClassVar[str] = "approval"

    message_id: int
    item: Item
    topic_id: int
    quantity: int
    requested_by: str
    stage: Stage = Stage.PENDING_APPROVAL
    created_at: datetime = field(default_factory=utils.now)

    @property
    def key(self) -> int:
        return self.message_id


@dataclass
class PendingDispatch:
    """Dispatcher-stage record; origin_message_id points back at the manager message."""

    KIND: ClassVar[str] = "dispatch"

    message_id: int
    item: Item
    quantity: int
    supplier: str
    date_stamp: str
    origin_message_id: int
    stage: Stage = Stage.PENDING_DISPATCH
    created_at: datetime = field(default_factory=utils.now)

    @property
    def key(self) -> int:
        return self.message_id


@dataclass
class PendingPoll:
    """Processing-stage record: receipt poll waiting for its first answer."""

    KIND: ClassVar[str] = "poll"

    poll_id: str
    message_id: int
    item: Item
    quantity: int
    supplier: str
    date_stamp: str
    stage: Stage = Stage.DISPATCHED
    created_at: datetime = field(default_factory=utils.now)

    @property
    def key(self) -> str:
        return self.poll_id


RECORD_TYPES = {cls.KIND: cls for cls in (PendingApproval, PendingDispatch, PendingPoll)}


def record_to_dict(record) -> Dict[str, Any]:
    data = asdict(record)
    data["item"] = record.item.to_dict()
    data["stage"] = record.stage.value
    return data


def record_from_dict(kind: str, data: Dict[str, Any]):
    values = dict(data)
    values["item"] = Item.from_dict(values["item"])
    values["stage"] = Stage(values["stage"])
    if isinstance(values.get("created_at"), str):
        values["created_at"] = datetime.fromisoformat(values["created_at"])
    return RECORD_TYPES[kind](**values)


# --- MARK MODE ---

@dataclass
class MarkSession:
    """Per-user bulk ordering accumulator."""

    enabled: bool = False
    items: Dict[str, Item] = field(default_factory=dict)

    def enable(self) -> None:
        self.enabled = True
        self.items = {}

    def disable(self) -> None:
        self.enabled = False
        self.items = {}

    def mark(self, item: Item) -> None:
        self.items[item.sku] = item

    def unmark(self, sku: str) -> None:
        self.items.pop(sku, None)

    def is_marked(self, sku: str) -> bool:
        return sku in self.items


# --- STORE ---

class PipelineStore:
    """
    Owner of all in-flight pipeline state.

    One instance is created by main.py and handed to every handler. Records live
    in process memory; with persist=True every change is mirrored to Redis and
    restore() reloads the tables after a restart.
    """

    def __init__(self, persist: bool = False):
        self.persist = persist
        self._tables: Dict[str, Dict[Any, Any]] = {kind: {} for kind in RECORD_TYPES}
        self.marks: Dict[int, MarkSession] = {}
        # Items added per lane since start, shown on the "Kitch Order (n)" buttons
        self.lane_counts: Dict[str, Counter] = {"kitchen": Counter(), "bar": Counter()}
        # Admin user id → SKU whose default quantity is expected in the next message
        self.pending_qty_edits: Dict[int, str] = {}

    def _table(self, kind: str) -> Dict[Any, Any]:
        if kind not in self._tables:
            raise ValueError(f"Unknown record kind: {kind}")
        return self._tables[kind]

    def _save(self, record) -> None:
        if self.persist:
            redis_state.redis_save_record(record.KIND, str(record.key), record_to_dict(record))

    def _forget(self, kind: str, key) -> None:
        if self.persist:
            redis_state.redis_delete_record(kind, str(key))

    def insert(self, record) -> None:
        table = self._table(record.KIND)
        if record.key in table:
            raise ValueError(f"{record.KIND} record {record.key} already exists")
        table[record.key] = record
        self._save(record)
        logger.info(f"Inserted {record.KIND} record {record.key} ({record.item.name} x{record.quantity})")

    def get(self, kind: str, key):
        record = self._table(kind).get(key)
        if record is None:
            raise RecordNotFound(kind, key)
        return record

    def find(self, kind: str, key):
        return self._table(kind).get(key)

    def peek(self, kind: str, key, action: Action):
        """Look up a record and check that action is allowed, without changing anything."""
        record = self.get(kind, key)
        return record, next_stage(record.stage, action)

    def advance(self, kind: str, key, action: Action):
        """
        Apply action to a record.

        A self-transition keeps the record in its table. Any other transition
        removes it, so a second press on the same button gets RecordNotFound.
        """
        record, target = self.peek(kind, key, action)
        if target == record.stage:
            return record
        del self._table(kind)[key]
        self._forget(kind, key)
        logger.info(f"{kind} record {key}: {record.stage.value} → {target.value}")
        record.stage = target
        return record

    def update(self, record) -> None:
        """Persist an in-place change (quantity bump) of a stored record."""
        if self._table(record.KIND).get(record.key) is not record:
            raise RecordNotFound(record.KIND, record.key)
        self._save(record)

    def consume(self, kind: str, key):
        record = self._table(kind).pop(key, None)
        if record is None:
            raise RecordNotFound(kind, key)
        self._forget(kind, key)
        return record

    def records(self, kind: str) -> List[Any]:
        return list(self._table(kind).values())

    def count(self, kind: str) -> int:
        return len(self._table(kind))

    def counts(self) -> Dict[str, int]:
        return {kind: len(table) for kind, table in self._tables.items()}

    def mark_session(self, user_id: int) -> MarkSession:
        if user_id not in self.marks:
            self.marks[user_id] = MarkSession()
        return self.marks[user_id]

    def in_mark_mode(self, user_id: int) -> bool:
        session = self.marks.get(user_id)
        return bool(session and session.enabled)

    def count_lane(self, lane: str, sku: str) -> None:
        self.lane_counts.setdefault(lane, Counter())[sku] += 1

    def lane_total(self, lane: str) -> int:
        return sum(self.lane_counts.get(lane, Counter()).values())

    def restore(self) -> int:
        """Reload pipeline tables from Redis. Returns the number of records restored."""
        if not self.persist:
            return 0
        restored = 0
        for kind in RECORD_TYPES:
            for key, data in redis_state.redis_load_records(kind).items():
                try:
                    record = record_from_dict(kind, data)
                except (KeyError, TypeError, ValueError) as e:
                    logger.error(f"Skipping unreadable {kind} record {key}: {e}")
                    continue
                self._table(kind)[record.key] = record
                restored += 1
        logger.info(f"Restored {restored} pipeline records from Redis")
        return restored

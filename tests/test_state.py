# Stage machine, records and PipelineStore
import pytest

import catalog
import redis_state
from errors import InvalidTransition, RecordNotFound
from state import (
    Action, MarkSession, PendingApproval, PendingDispatch, PendingPoll, PipelineStore, Stage,
    TERMINAL_STAGES, TRANSITIONS, next_stage, record_from_dict, record_to_dict,
)


def approval(message_id=1, quantity=1):
    return PendingApproval(
        message_id=message_id,
        item=catalog.get_item("SKU123"),
        topic_id=5,
        quantity=quantity,
        requested_by="alice",
    )


def test_transition_table():
    assert next_stage(Stage.PENDING_APPROVAL, Action.INCREASE) == Stage.PENDING_APPROVAL
    assert next_stage(Stage.PENDING_APPROVAL, Action.APPROVE) == Stage.PENDING_DISPATCH
    assert next_stage(Stage.PENDING_DISPATCH, Action.DISPATCH_APPROVE) == Stage.DISPATCHED
    assert next_stage(Stage.DISPATCHED, Action.CONFIRM) == Stage.COMPLETED
    for (stage, _), target in TRANSITIONS.items():
        assert stage not in TERMINAL_STAGES


def test_invalid_transition():
    with pytest.raises(InvalidTransition):
        next_stage(Stage.PENDING_DISPATCH, Action.INCREASE)
    with pytest.raises(InvalidTransition):
        next_stage(Stage.COMPLETED, Action.CONFIRM)


def test_insert_get_and_duplicates(store):
    record = approval()
    store.insert(record)
    assert store.get(PendingApproval.KIND, 1) is record
    assert store.find(PendingApproval.KIND, 2) is None
    with pytest.raises(ValueError):
        store.insert(approval())
    with pytest.raises(RecordNotFound):
        store.get(PendingApproval.KIND, 2)


def test_unknown_kind(store):
    with pytest.raises(ValueError):
        store.find("invoice", 1)


def test_self_transition_keeps_record(store):
    store.insert(approval())
    record = store.advance(PendingApproval.KIND, 1, Action.INCREASE)
    assert record.stage == Stage.PENDING_APPROVAL
    assert store.count(PendingApproval.KIND) == 1


def test_advance_removes_record(store):
    store.insert(approval())
    record = store.advance(PendingApproval.KIND, 1, Action.REJECT)
    assert record.stage == Stage.REJECTED
    assert store.count(PendingApproval.KIND) == 0
    with pytest.raises(RecordNotFound):
        store.advance(PendingApproval.KIND, 1, Action.REJECT)


def test_peek_does_not_change_anything(store):
    store.insert(approval())
    record, target = store.peek(PendingApproval.KIND, 1, Action.APPROVE)
    assert target == Stage.PENDING_DISPATCH
    assert record.stage == Stage.PENDING_APPROVAL
    assert store.count(PendingApproval.KIND) == 1


def test_update_requires_stored_record(store):
    with pytest.raises(RecordNotFound):
        store.update(approval())


def test_consume(store):
    store.insert(approval())
    assert store.consume(PendingApproval.KIND, 1).message_id == 1
    with pytest.raises(RecordNotFound):
        store.consume(PendingApproval.KIND, 1)


def test_record_dict_conversion():
    poll = PendingPoll(
        poll_id="p1", message_id=9, item=catalog.get_item("SKU200"), quantity=4,
        supplier="Meat Co", date_stamp="18.10.26 14:05",
    )
    data = record_to_dict(poll)
    assert data["item"]["item_sku"] == "SKU200"
    assert data["stage"] == "dispatched"

    restored = record_from_dict(PendingPoll.KIND, data)
    assert restored == poll


def test_mark_session():
    session = MarkSession()
    session.enable()
    tomatoes = catalog.get_item("SKU123")
    session.mark(tomatoes)
    session.mark(tomatoes)
    assert session.is_marked("SKU123")
    assert len(session.items) == 1
    session.unmark("SKU123")
    session.unmark("SKU123")
    assert not session.is_marked("SKU123")
    session.mark(tomatoes)
    session.disable()
    assert not session.enabled
    assert session.items == {}


def test_mark_mode_per_user(store):
    store.mark_session(1).enable()
    assert store.in_mark_mode(1)
    assert not store.in_mark_mode(2)


def test_lane_counts(store):
    store.count_lane("kitchen", "SKU123")
    store.count_lane("kitchen", "SKU123")
    store.count_lane("bar", "SKU300")
    assert store.lane_total("kitchen") == 2
    assert store.lane_total("bar") == 1


def test_persisted_store_mirrors_and_restores(monkeypatch):
    saved = {}

    def fake_save(kind, key, data):
        saved[(kind, key)] = data
        return True

    def fake_delete(kind, key):
        saved.pop((kind, key), None)
        return True

    def fake_load(kind):
        return {key: data for (k, key), data in saved.items() if k == kind}

    monkeypatch.setattr(redis_state, "redis_save_record", fake_save)
    monkeypatch.setattr(redis_state, "redis_delete_record", fake_delete)
    monkeypatch.setattr(redis_state, "redis_load_records", fake_load)

    store = PipelineStore(persist=True)
    store.insert(approval(1))
    store.insert(approval(2, quantity=3))
    store.advance(PendingApproval.KIND, 1, Action.REJECT)
    assert list(saved) == [("approval", "2")]

    fresh = PipelineStore(persist=True)
    assert fresh.restore() == 1
    assert fresh.get(PendingApproval.KIND, 2).quantity == 3


def test_restore_without_persistence(store):
    assert store.restore() == 0


def test_dispatch_record_key():
    dispatch = PendingDispatch(
        message_id=77, item=catalog.get_item("SKU123"), quantity=1,
        supplier="Green Farm", date_stamp="18.10.26 14:05", origin_message_id=5,
    )
    assert dispatch.key == 77
    assert dispatch.stage == Stage.PENDING_DISPATCH

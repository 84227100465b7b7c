# Admin file management
import os
import json

import pytest

import admin
import catalog
from errors import InvalidPayload, RecordNotFound
from conftest import ADMIN_CHAT, ADMIN_USER, SAMPLE_ITEMS, run


def read_json(data_dir, filename):
    with open(os.path.join(str(data_dir), filename), encoding="utf-8") as f:
        return json.load(f)


def backups(filename):
    return admin.list_backups(filename)


def test_detect_record_type():
    assert admin.detect_record_type([{"item_sku": "A", "category_id": 1}]) == "items"
    assert admin.detect_record_type([{"category_id": 1, "category_name": "Meat"}]) == "categories"
    assert admin.detect_record_type([{"supplier": "X", "enabled": True}]) == "suppliers"


@pytest.mark.parametrize("payload", [[], [{"name": "x"}], [1, 2], [{"item_sku": "A"}, {"supplier": "B"}]])
def test_detect_record_type_rejects(payload):
    with pytest.raises(InvalidPayload):
        admin.detect_record_type(payload)


def test_json_array_replaces_file_after_backup(data_dir):
    payload = [{"supplier": "Fish Ltd", "enabled": True}]
    assert admin.apply_admin_json(json.dumps(payload)) == "Suppliers JSON updated!"
    assert read_json(data_dir, "suppliers.json") == payload
    assert len(backups("suppliers.json")) == 1


@pytest.mark.parametrize("text", ["[not json", '{"name": "no sku"}', '[{"item_sku": "A"}, {"supplier": "B"}]'])
def test_rejected_json_writes_nothing(data_dir, text):
    before = read_json(data_dir, "items.json")
    with pytest.raises(InvalidPayload):
        admin.apply_admin_json(text)
    assert read_json(data_dir, "items.json") == before
    assert backups("items.json") == []


def test_item_upsert(data_dir):
    changed = dict(SAMPLE_ITEMS[0], item_name="Cherry Tomatoes")
    assert admin.apply_admin_json(json.dumps(changed)) == "Item updated!"
    assert catalog.get_item("SKU123").name == "Cherry Tomatoes"

    assert admin.apply_admin_json(json.dumps({"item_sku": "SKU900", "item_name": "Olive Oil"})) == "Item created!"
    assert len(read_json(data_dir, "items.json")) == len(SAMPLE_ITEMS) + 1


def test_csv_conversion_helpers():
    records = admin.csv_to_records("item_sku, item_name\nA1, Salt\n\nA2,\"Pepper, black\"\n")
    assert records == [{"item_sku": "A1", "item_name": "Salt"}, {"item_sku": "A2", "item_name": "Pepper, black"}]
    text = admin.records_to_csv([{"a": "1"}, {"a": "2", "b": None}])
    assert text == "a,b\n1,\n2,\n"
    assert admin.records_to_csv([]) == ""


def test_csv_items_message(data_dir):
    text = "CSV Items (edit and send back):\n\nitem_sku,item_name,default_quantity\nC1,Flour,5\n"
    assert admin.apply_csv_items(text) == "CSV updated and converted to JSON!"
    assert read_json(data_dir, "items.json") == [{"item_sku": "C1", "item_name": "Flour", "default_quantity": "5"}]
    assert os.path.exists(os.path.join(str(data_dir), "items.csv"))
    assert catalog.get_item("C1").quantity == 5


def test_csv_items_without_sku_column(data_dir):
    with pytest.raises(InvalidPayload):
        admin.apply_csv_items("CSV Items\nname\nFlour\n")
    assert not os.path.exists(os.path.join(str(data_dir), "items.csv"))


def test_import_csv_document(data_dir):
    content = "supplier,enabled\nFish Ltd,true\nOld Vendor,false\n".encode("utf-8")
    reply = admin.import_csv_document("suppliers.csv", content)
    assert reply.startswith("CSV imported and saved as suppliers.csv")
    assert [s.name for s in catalog.list_suppliers(enabled_only=True)] == ["Fish Ltd"]


def test_import_csv_document_rejections():
    with pytest.raises(InvalidPayload):
        admin.import_csv_document("prices.csv", b"a,b\n1,2\n")
    with pytest.raises(InvalidPayload):
        admin.import_csv_document("items.csv", b"supplier,enabled\nX,true\n")


def test_document_upload_downloads_through_bot(bot):
    bot.files["f1"] = b"category_id,category_name,parent_category\n500,Herbs,kitchen\n"
    run(admin.handle_document(ADMIN_CHAT, {"file_id": "f1", "file_name": "categories.csv"}))
    assert bot.sent("get_file") == [{"file_id": "f1"}]
    assert catalog.get_category(500).name == "Herbs"


def test_restore_latest_backup(data_dir):
    original = read_json(data_dir, "suppliers.json")
    admin.apply_admin_json(json.dumps([{"supplier": "A"}]))
    admin.apply_admin_json(json.dumps([{"supplier": "B"}]))

    admin.restore_latest_backup("suppliers.json")
    assert read_json(data_dir, "suppliers.json") == [{"supplier": "A"}]
    assert len(backups("suppliers.json")) == 3

    first = backups("suppliers.json")[0]
    with open(first, encoding="utf-8") as f:
        assert json.load(f) == original


def test_restore_without_backup():
    with pytest.raises(RecordNotFound):
        admin.restore_latest_backup("categories.json")


def test_item_actions(data_dir):
    admin.assign_supplier("SKU400", "Meat Co")
    assert catalog.get_item("SKU400").default_supplier == "Meat Co"

    admin.set_default_quantity("SKU400", "6")
    assert catalog.get_item("SKU400").quantity == 6
    with pytest.raises(InvalidPayload):
        admin.set_default_quantity("SKU400", "-1")

    admin.remove_item("SKU400")
    assert catalog.get_item("SKU400") is None
    with pytest.raises(RecordNotFound):
        admin.remove_item("SKU400")


def test_set_qty_flow(store, bot):
    run(admin.handle_item_action(store, ADMIN_CHAT, ADMIN_USER, "setqty", "SKU200"))
    assert store.pending_qty_edits == {ADMIN_USER: "SKU200"}

    assert run(admin.handle_admin_text(store, ADMIN_CHAT, ADMIN_USER, "4")) is True
    assert catalog.get_item("SKU200").quantity == 4
    assert store.pending_qty_edits == {}
    assert bot.sent("send_message")[-1]["text"] == "Quantity of Chicken Breast set to 4."


def test_assign_menu_lists_enabled_suppliers(store, bot):
    run(admin.handle_item_action(store, ADMIN_CHAT, ADMIN_USER, "assign", "SKU123"))
    markup = bot.sent("send_message")[-1]["reply_markup"]
    assert [row[0].text for row in markup.inline_keyboard] == ["Green Farm", "Meat Co"]
    assert markup.inline_keyboard[0][0].callback_data == "admin_assign|SKU123|Green Farm"


def test_plain_text_is_not_an_admin_save(store, bot):
    assert run(admin.handle_admin_text(store, ADMIN_CHAT, ADMIN_USER, "hello")) is False
    assert bot.calls == []


def test_long_dump_is_sent_as_document(data_dir, bot):
    big = [{"item_sku": f"S{i}", "item_name": f"Item number {i}"} for i in range(200)]
    with open(os.path.join(str(data_dir), "items.json"), "w", encoding="utf-8") as f:
        json.dump(big, f, indent=2)
    run(admin.dump_file(ADMIN_CHAT, "json_items"))
    document = bot.sent("send_document")[-1]
    assert document["filename"] == "items.json"

    run(admin.dump_file(ADMIN_CHAT, "json_suppliers"))
    assert bot.sent("send_message")[-1]["text"].startswith("JSON Suppliers (edit and send back):")

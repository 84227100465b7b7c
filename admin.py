# -*- coding: utf-8 -*-
# admin.py - Catalog file management from the admin chat

# =============================================================================
# ADMIN FILE MANAGEMENT
# =============================================================================
# /admin → Edit Item | Edit Files | Restore
#
# - Edit Files dumps a catalog file into the chat; the admin edits it and sends
#   it back as a plain text message (JSON starting with [ or {, or CSV starting
#   with "CSV Items").
# - Edit Item walks category → item and offers Set Qty / Remove / Assign To.
# - Uploading items.csv / categories.csv / suppliers.csv as a document replaces
#   the matching JSON file.
# - Every write first copies the current file to <file>.bak_<epoch millis>;
#   Restore puts the newest copy back.
#
# Nothing is written when a payload is rejected (InvalidPayload).
# =============================================================================

import io
import os
import re
import csv
import json
import time
import shutil
import logging
from typing import Any, Dict, List, Optional, Tuple

from telegram import InlineKeyboardButton, InlineKeyboardMarkup
from telegram.error import TelegramError

import catalog
from errors import ExternalCallFailure, InvalidPayload, RecordNotFound
from state import PipelineStore
from utils import safe_send_message, safe_send_document, get_bot, get_error_description

logger = logging.getLogger(__name__)

ITEMS_CSV = "items.csv"
MAX_INLINE_DUMP = 3500

# Record type → (JSON file, key that identifies it)
RECORD_FILES: Dict[str, Tuple[str, str]] = {
    "items": (catalog.ITEMS_FILE, "item_sku"),
    "categories": (catalog.CATEGORIES_FILE, "category_id"),
    "suppliers": (catalog.SUPPLIERS_FILE, "supplier"),
}

# Uploadable CSV document name → record type
CSV_UPLOADS = {
    "items.csv": "items",
    "categories.csv": "categories",
    "suppliers.csv": "suppliers",
}

# Files the Edit Files / Restore menus can act on
EDITABLE_FILES = {
    "csv_items": ITEMS_CSV,
    "json_items": catalog.ITEMS_FILE,
    "json_categories": catalog.CATEGORIES_FILE,
    "json_suppliers": catalog.SUPPLIERS_FILE,
}

CSV_PREFIX = re.compile(r"^CSV Items(\s*\(edit and send back\))?:?", re.IGNORECASE)


# --- FILE HELPERS ---

def backup_file(filename: str) -> Optional[str]:
    """Copy a data file to <file>.bak_<epoch millis>. Returns the backup path, None when there was nothing to copy."""
    path = catalog.data_path(filename)
    if not os.path.exists(path):
        return None
    stamp = int(time.time() * 1000)
    while os.path.exists(f"{path}.bak_{stamp}"):
        stamp += 1
    backup_path = f"{path}.bak_{stamp}"
    shutil.copy2(path, backup_path)
    logger.info(f"Backed up {filename} → {os.path.basename(backup_path)}")
    return backup_path


def write_file(filename: str, content: str) -> None:
    os.makedirs(catalog.data_path(""), exist_ok=True)
    backup_file(filename)
    with open(catalog.data_path(filename), "w", encoding="utf-8") as f:
        f.write(content)


def save_json(filename: str, data: Any) -> None:
    write_file(filename, json.dumps(data, indent=2, ensure_ascii=False))
    logger.info(f"Saved {filename} ({len(data) if isinstance(data, list) else 1} records)")


def read_file(filename: str) -> Optional[str]:
    path = catalog.data_path(filename)
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def list_backups(filename: str) -> List[str]:
    """Backup paths of a file, oldest first."""
    directory = catalog.data_path("")
    if not os.path.isdir(directory):
        return []
    prefix = f"{filename}.bak_"
    stamps = []
    for name in os.listdir(directory):
        if name.startswith(prefix) and name[len(prefix):].isdigit():
            stamps.append(int(name[len(prefix):]))
    return [os.path.join(directory, f"{prefix}{stamp}") for stamp in sorted(stamps)]


def restore_latest_backup(filename: str) -> str:
    """Put the newest backup of filename back in place (the current file is backed up first)."""
    backups = list_backups(filename)
    if not backups:
        raise RecordNotFound("backup", filename)
    latest = backups[-1]
    with open(latest, "r", encoding="utf-8") as f:
        content = f.read()
    write_file(filename, content)
    logger.info(f"Restored {filename} from {os.path.basename(latest)}")
    return latest


# --- CSV CONVERSION ---

def csv_to_records(text: str) -> List[Dict[str, str]]:
    """Header row + data rows → list of dicts with stripped keys and values"""
    reader = csv.DictReader(io.StringIO(text.strip()))
    records = []
    for row in reader:
        record = {
            (key or "").strip(): (value or "").strip()
            for key, value in row.items()
            if key is not None
        }
        if any(record.values()):
            records.append(record)
    return records


def records_to_csv(records: List[Dict[str, Any]]) -> str:
    """Inverse of csv_to_records; columns are the union of keys in first-seen order."""
    if not records:
        return ""
    fieldnames: List[str] = []
    for record in records:
        for key in record:
            if key not in fieldnames:
                fieldnames.append(key)
    out = io.StringIO()
    writer = csv.DictWriter(out, fieldnames=fieldnames, restval="", lineterminator="\n")
    writer.writeheader()
    for record in records:
        writer.writerow({k: "" if v is None else v for k, v in record.items()})
    return out.getvalue()


# --- JSON / CSV SAVE ---

def _record_type(record: Any) -> Optional[str]:
    if not isinstance(record, dict):
        return None
    for record_type, (_, key) in RECORD_FILES.items():
        if record.get(key) not in (None, ""):
            return record_type
    return None


def detect_record_type(records: Any) -> str:
    """
    items / categories / suppliers, decided by which identifying key the
    records carry. Items also carry category_id, so item_sku is checked first.
    Every record must agree.
    """
    if not isinstance(records, list) or not records:
        raise InvalidPayload("Unknown JSON structure.")
    types = {_record_type(record) for record in records}
    if None in types:
        raise InvalidPayload("Unknown JSON structure.")
    if len(types) > 1:
        raise InvalidPayload(f"Mixed record types: {', '.join(sorted(types))}")
    return types.pop()


def upsert_item(record: Dict[str, Any]) -> bool:
    """Replace the item with the same SKU or append it. Returns True when created."""
    items = catalog.load_json(catalog.ITEMS_FILE)
    sku = str(record["item_sku"])
    for idx, existing in enumerate(items):
        if str(existing.get("item_sku")) == sku:
            items[idx] = record
            save_json(catalog.ITEMS_FILE, items)
            logger.info(f"Item {sku} updated")
            return False
    items.append(record)
    save_json(catalog.ITEMS_FILE, items)
    logger.info(f"Item {sku} created")
    return True


def apply_admin_json(text: str) -> str:
    """Save JSON pasted into the admin chat. Returns the reply text."""
    try:
        payload = json.loads(text.strip())
    except json.JSONDecodeError as e:
        raise InvalidPayload(f"Invalid JSON format: {e.msg}")

    if isinstance(payload, dict):
        if not payload.get("item_sku"):
            raise InvalidPayload("Unknown JSON structure.")
        created = upsert_item(payload)
        return "Item created!" if created else "Item updated!"

    record_type = detect_record_type(payload)
    filename, _ = RECORD_FILES[record_type]
    save_json(filename, payload)
    return f"{record_type.capitalize()} JSON updated!"


def apply_csv_items(text: str) -> str:
    """'CSV Items' message: items.csv replaced, then converted into items.json"""
    csv_text = CSV_PREFIX.sub("", text.strip(), count=1).strip()
    records = csv_to_records(csv_text)
    if not records or detect_record_type(records) != "items":
        raise InvalidPayload("CSV must have an item_sku column and at least one row.")
    write_file(ITEMS_CSV, csv_text + "\n")
    save_json(catalog.ITEMS_FILE, records)
    return "CSV updated and converted to JSON!"


def import_csv_document(filename: str, content: bytes) -> str:
    """Uploaded catalog CSV: saved as-is, then converted into the matching JSON file."""
    record_type = CSV_UPLOADS.get(filename)
    if record_type is None:
        raise InvalidPayload(f"Unsupported file {filename}. Send one of: {', '.join(CSV_UPLOADS)}")
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise InvalidPayload(f"{filename} is not UTF-8 text")

    records = csv_to_records(text)
    if not records or detect_record_type(records) != record_type:
        raise InvalidPayload(f"{filename} does not look like {record_type}")

    write_file(filename, text)
    json_file, _ = RECORD_FILES[record_type]
    save_json(json_file, records)
    return f"CSV imported and saved as {filename}, {len(records)} {record_type} converted to JSON."


# --- ITEM ACTIONS ---

def _find_item(sku: str) -> Tuple[List[Dict[str, Any]], int]:
    items = catalog.load_json(catalog.ITEMS_FILE)
    for idx, raw in enumerate(items):
        if str(raw.get("item_sku")) == str(sku):
            return items, idx
    raise RecordNotFound("item", sku)


def remove_item(sku: str) -> Dict[str, Any]:
    items, idx = _find_item(sku)
    removed = items.pop(idx)
    save_json(catalog.ITEMS_FILE, items)
    logger.info(f"Item {sku} removed")
    return removed


def assign_supplier(sku: str, supplier: str) -> Dict[str, Any]:
    items, idx = _find_item(sku)
    items[idx]["default_supplier"] = supplier
    save_json(catalog.ITEMS_FILE, items)
    logger.info(f"Item {sku} assigned to {supplier}")
    return items[idx]


def set_default_quantity(sku: str, value: str) -> Dict[str, Any]:
    value = value.strip()
    if not value.isdigit() or int(value) <= 0:
        raise InvalidPayload("Quantity must be a positive whole number.")
    items, idx = _find_item(sku)
    items[idx]["default_quantity"] = str(int(value))
    save_json(catalog.ITEMS_FILE, items)
    logger.info(f"Default quantity of item {sku} set to {value}")
    return items[idx]


# --- KEYBOARDS ---

def admin_menu_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("Edit Item", callback_data="admin_edit_item")],
        [InlineKeyboardButton("Edit Files", callback_data="admin_edit_files")],
        [InlineKeyboardButton("Restore", callback_data="admin_restore_menu")],
    ])


def files_keyboard(action: str) -> InlineKeyboardMarkup:
    labels = {
        "csv_items": "CSV: Items",
        "json_items": "JSON: Items",
        "json_categories": "JSON: Categories",
        "json_suppliers": "JSON: Suppliers",
    }
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(label, callback_data=f"{action}|{key}")]
        for key, label in labels.items()
    ])


def item_actions_keyboard(sku: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton("Set Qty", callback_data=f"admin_item_action|setqty|{sku}"),
         InlineKeyboardButton("Remove", callback_data=f"admin_item_action|remove|{sku}")],
        [InlineKeyboardButton("Assign To", callback_data=f"admin_item_action|assign|{sku}")],
    ])


def assign_keyboard(sku: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(s.name, callback_data=f"admin_assign|{sku}|{s.name}")]
        for s in catalog.list_suppliers(enabled_only=True)
    ])


# --- CHAT HANDLERS ---

async def show_menu(chat_id: int):
    return await safe_send_message(chat_id, "Admin Menu:", admin_menu_keyboard())


async def show_files_menu(chat_id: int):
    return await safe_send_message(chat_id, "Select file to edit (edit and send back):", files_keyboard("admin_dump"))


async def show_restore_menu(chat_id: int):
    return await safe_send_message(chat_id, "Restore the latest backup of:", files_keyboard("admin_restore"))


async def dump_file(chat_id: int, key: str):
    """Send a catalog file for editing; long files go as a document."""
    filename = EDITABLE_FILES[key]
    content = read_file(filename)
    if content is None:
        content = "" if filename.endswith(".csv") else "[]"

    if filename.endswith(".csv"):
        header = "CSV Items (edit and send back):"
    else:
        header = f"JSON {filename.split('.')[0].capitalize()} (edit and send back):"

    if len(content) > MAX_INLINE_DUMP:
        return await safe_send_document(chat_id, content.encode("utf-8"), filename, caption=header)
    return await safe_send_message(chat_id, f"{header}\n\n{content}")


async def restore_file(chat_id: int, key: str):
    filename = EDITABLE_FILES[key]
    backup = restore_latest_backup(filename)
    return await safe_send_message(chat_id, f"♻️ {filename} restored from {os.path.basename(backup)}")


async def show_edit_categories(chat_id: int):
    return await safe_send_message(
        chat_id,
        "Select a category to edit its items:",
        InlineKeyboardMarkup([
            [InlineKeyboardButton(c.name, callback_data=f"admin_edit_cat|{c.category_id}")]
            for c in catalog.list_categories()
        ]),
    )


async def show_edit_items(chat_id: int, category_id: int):
    return await safe_send_message(
        chat_id,
        "Select an item to edit:",
        InlineKeyboardMarkup([
            [InlineKeyboardButton(item.name, callback_data=f"admin_edit_item_json|{item.sku}")]
            for item in catalog.list_items(category_id=category_id)
        ]),
    )


async def show_item_json(chat_id: int, sku: str):
    items, idx = _find_item(sku)
    text = json.dumps(items[idx], indent=2, ensure_ascii=False)
    return await safe_send_message(
        chat_id,
        f"Edit this item JSON and send back to update:\n\n{text}",
        item_actions_keyboard(sku),
    )


async def handle_item_action(store: PipelineStore, chat_id: int, user_id: int, action: str, sku: str):
    """Set Qty / Remove / Assign To"""
    if action == "setqty":
        _find_item(sku)
        store.pending_qty_edits[user_id] = sku
        return await safe_send_message(chat_id, "Send new quantity for this item:")
    if action == "remove":
        removed = remove_item(sku)
        return await safe_send_message(chat_id, f"🗑 {removed.get('item_name', sku)} removed.")
    if action == "assign":
        _find_item(sku)
        return await safe_send_message(chat_id, "Assign item to:", assign_keyboard(sku))
    raise InvalidPayload(f"Unknown item action {action}")


async def handle_assign(chat_id: int, sku: str, supplier: str):
    item = assign_supplier(sku, supplier)
    return await safe_send_message(chat_id, f"{item.get('item_name', sku)} assigned to {supplier}.")


async def handle_admin_text(store: PipelineStore, chat_id: int, user_id: int, text: str) -> bool:
    """
    Text typed in the admin chat. Returns True when it was an admin save.

    A pending Set Qty is served first, then CSV, then JSON.
    """
    stripped = text.strip()

    sku = store.pending_qty_edits.get(user_id)
    if sku is not None and stripped.isdigit():
        item = set_default_quantity(sku, stripped)
        del store.pending_qty_edits[user_id]
        await safe_send_message(chat_id, f"Quantity of {item.get('item_name', sku)} set to {item['default_quantity']}.")
        return True

    if CSV_PREFIX.match(stripped):
        await safe_send_message(chat_id, apply_csv_items(stripped))
        return True

    if stripped.startswith("[") or stripped.startswith("{"):
        await safe_send_message(chat_id, apply_admin_json(stripped))
        return True

    return False


async def handle_document(chat_id: int, document: Dict[str, Any]):
    """Admin uploaded a file: download it through the Bot API and import it."""
    filename = document.get("file_name") or ""
    if filename not in CSV_UPLOADS:
        raise InvalidPayload(f"Unsupported file {filename or '(unnamed)'}. Send one of: {', '.join(CSV_UPLOADS)}")
    try:
        tg_file = await get_bot().get_file(document["file_id"])
        content = bytes(await tg_file.download_as_bytearray())
    except TelegramError as e:
        logger.error(f"Download of {filename} failed: {e}")
        raise ExternalCallFailure("get_file", e, get_error_description(e)) from e
    return await safe_send_message(chat_id, import_csv_document(filename, content))

# -*- coding: utf-8 -*-
"""
Catalog store: items, categories and suppliers kept as flat JSON files.

Files are read fresh on every call so that admin edits are picked up
immediately. Nothing here is cached and nothing here writes (see admin.py).

Files (under utils.DATA_DIR):
- items.json:      [{"item_sku", "item_name", "category_id", "category_name",
                     "sub_category", "default_supplier", "default_quantity",
                     "measure_unit", "source"}, ...]
- categories.json: [{"category_id", "category_name", "parent_category"}, ...]
- suppliers.json:  [{"supplier", "enabled"}, ...]
"""

import os
import json
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

import utils

logger = logging.getLogger(__name__)

ITEMS_FILE = "items.json"
CATEGORIES_FILE = "categories.json"
SUPPLIERS_FILE = "suppliers.json"

UNKNOWN_SUPPLIER = "Unknown Supplier"
DEFAULT_UNIT = "pc"
LANES = ("kitchen", "bar")


def data_path(filename: str) -> str:
    return os.path.join(utils.DATA_DIR, filename)


def load_json(filename: str) -> List[Dict[str, Any]]:
    """Load a catalog file; a missing file is an empty catalog."""
    path = data_path(filename)
    if not os.path.exists(path):
        logger.warning(f"Catalog file {path} not found - treating as empty")
        return []
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def parse_quantity(value: Any) -> int:
    """Default quantities are stored as strings ("1", "2"); anything unusable counts as 1."""
    qty = _to_int(value)
    if qty is None:
        try:
            qty = int(float(str(value).strip()))
        except (TypeError, ValueError):
            qty = None
    return qty if qty and qty > 0 else 1


@dataclass(frozen=True)
class Item:
    """Catalog item (immutable reference data)."""

    sku: str
    name: str
    category_id: Optional[int] = None
    category_name: str = ""
    sub_category: str = ""
    default_supplier: str = ""
    default_quantity: str = "1"
    measure_unit: str = DEFAULT_UNIT
    source: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Item":
        return cls(
            sku=str(data.get("item_sku", "")).strip(),
            name=str(data.get("item_name", "")).strip(),
            category_id=_to_int(data.get("category_id")),
            category_name=data.get("category_name") or "",
            sub_category=data.get("sub_category") or "",
            default_supplier=data.get("default_supplier") or "",
            default_quantity=str(data.get("default_quantity") or "1"),
            measure_unit=data.get("measure_unit") or DEFAULT_UNIT,
            source=(data.get("source") or "").strip().lower(),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["item_sku"] = data.pop("sku")
        data["item_name"] = data.pop("name")
        return data

    @property
    def lane(self) -> str:
        """kitchen or bar: explicit source wins, otherwise the category id decides."""
        if self.source in LANES:
            return self.source
        if self.category_id is not None and self.category_id >= utils.BAR_CATEGORY_THRESHOLD:
            return "bar"
        return "kitchen"

    @property
    def quantity(self) -> int:
        return parse_quantity(self.default_quantity)


@dataclass(frozen=True)
class Category:
    category_id: Optional[int]
    name: str
    parent: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Category":
        return cls(
            category_id=_to_int(data.get("category_id")),
            name=data.get("category_name") or "",
            parent=(data.get("parent_category") or "").lower(),
        )


@dataclass(frozen=True)
class Supplier:
    name: str
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Supplier":
        enabled = data.get("enabled", True)
        if isinstance(enabled, str):
            enabled = enabled.strip().lower() in ("1", "true", "yes", "y")
        return cls(name=str(data.get("supplier", "")).strip(), enabled=bool(enabled))


# --- READ INTERFACE ---

def list_items(category_id: Optional[int] = None, sub_category: Optional[str] = None,
               lane: Optional[str] = None, query: Optional[str] = None,
               supplier: Optional[str] = None) -> List[Item]:
    """List catalog items, optionally filtered; all filters combine with AND."""
    items = []
    for raw in load_json(ITEMS_FILE):
        item = Item.from_dict(raw)
        if not item.sku:
            continue
        if category_id is not None and item.category_id != category_id:
            continue
        if sub_category is not None and item.sub_category != sub_category:
            continue
        if lane is not None and item.lane != lane:
            continue
        if query and query.lower() not in item.name.lower():
            continue
        if supplier is not None and item.default_supplier.lower() != supplier.lower():
            continue
        items.append(item)
    return items


def get_item(sku: str) -> Optional[Item]:
    for item in list_items():
        if item.sku == str(sku):
            return item
    return None


def list_categories(parent: Optional[str] = None) -> List[Category]:
    categories = [Category.from_dict(raw) for raw in load_json(CATEGORIES_FILE)]
    if parent is not None:
        categories = [c for c in categories if c.parent == parent.lower()]
    return categories


def get_category(category_id: int) -> Optional[Category]:
    for category in list_categories():
        if category.category_id == category_id:
            return category
    return None


def list_suppliers(enabled_only: bool = False) -> List[Supplier]:
    suppliers = [Supplier.from_dict(raw) for raw in load_json(SUPPLIERS_FILE)]
    if enabled_only:
        suppliers = [s for s in suppliers if s.enabled]
    return suppliers


def list_sub_categories(lane: str) -> List[str]:
    """Sub-categories of a lane in catalog order."""
    seen = []
    for item in list_items(lane=lane):
        if item.sub_category and item.sub_category not in seen:
            seen.append(item.sub_category)
    return seen


def resolve_supplier(item: Item) -> str:
    """
    Canonical supplier name for an item.

    Case-insensitive match of the item's default supplier against suppliers.json.
    Falls back to the item's own spelling, then to "Unknown Supplier".
    """
    wanted = item.default_supplier.strip().lower()
    if wanted:
        for supplier in list_suppliers():
            if supplier.name.lower() == wanted:
                return supplier.name
        return item.default_supplier.strip()
    return UNKNOWN_SUPPLIER

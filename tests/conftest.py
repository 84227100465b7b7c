# Shared fixtures: environment, sample catalog and a recording fake bot
import os
import json
import asyncio
from types import SimpleNamespace

# Settings are read at import time, so they must be in place before any bot module is imported
os.environ["BOT_TOKEN"] = "123456:TEST-TOKEN"
os.environ["GROUP_CHAT_ID"] = "-1001234567890"
os.environ["ADMIN_CHAT_ID"] = "-1009999999999"
os.environ["ADMIN_USER_ID"] = "4242"
os.environ["TIMEZONE"] = "UTC"
for name in ("REDIS_URL", "WEBHOOK_URL", "TOPIC_MAP"):
    os.environ.pop(name, None)

import pytest
from telegram.error import NetworkError

import utils
from state import PipelineStore

GROUP = -1001234567890
ADMIN_CHAT = -1009999999999
ADMIN_USER = 4242

SAMPLE_ITEMS = [
    {"item_sku": "SKU123", "item_name": "Tomatoes", "category_id": 101, "category_name": "Vegetables",
     "sub_category": "veggies", "default_supplier": "green farm", "default_quantity": "1",
     "measure_unit": "kg", "source": "kitchen"},
    {"item_sku": "SKU200", "item_name": "Chicken Breast", "category_id": 102, "category_name": "Meat",
     "sub_category": "meat", "default_supplier": "Meat Co", "default_quantity": "2", "measure_unit": "kg"},
    {"item_sku": "SKU300", "item_name": "Lime", "category_id": 30001, "category_name": "Fruits",
     "sub_category": "bar fruits", "default_supplier": "Green Farm", "default_quantity": "10",
     "measure_unit": "pc"},
    {"item_sku": "SKU400", "item_name": "Napkins", "category_id": 103, "category_name": "Supplies",
     "sub_category": "plastics", "default_supplier": "", "default_quantity": "1"},
]

SAMPLE_CATEGORIES = [
    {"category_id": 101, "category_name": "Vegetables", "parent_category": "kitchen"},
    {"category_id": 102, "category_name": "Meat", "parent_category": "kitchen"},
    {"category_id": 103, "category_name": "Supplies", "parent_category": "kitchen"},
    {"category_id": 30001, "category_name": "Fruits", "parent_category": "bar"},
]

SAMPLE_SUPPLIERS = [
    {"supplier": "Green Farm", "enabled": True},
    {"supplier": "Meat Co", "enabled": True},
    {"supplier": "Old Vendor", "enabled": False},
]


def run(coro):
    return asyncio.run(coro)


class FakeFile:
    def __init__(self, content: bytes):
        self.content = content

    async def download_as_bytearray(self):
        return bytearray(self.content)


class FakeBot:
    """Stands in for telegram.Bot: records every call and returns message-like objects."""

    def __init__(self):
        self.calls = []
        self.files = {}
        self._failures = {}
        self._next_message_id = 1000
        self._next_poll_id = 0

    def fail(self, method, when=None):
        """Make method raise NetworkError (only for calls matching when(kwargs), if given)."""
        self._failures[method] = when or (lambda kwargs: True)

    def sent(self, method):
        return [kwargs for name, kwargs in self.calls if name == method]

    def _record(self, method, kwargs):
        self.calls.append((method, kwargs))
        check = self._failures.get(method)
        if check is not None and check(kwargs):
            raise NetworkError(f"{method} failed")

    def _message(self, chat_id):
        self._next_message_id += 1
        return SimpleNamespace(message_id=self._next_message_id, chat_id=chat_id)

    async def send_message(self, **kwargs):
        self._record("send_message", kwargs)
        return self._message(kwargs["chat_id"])

    async def edit_message_text(self, **kwargs):
        self._record("edit_message_text", kwargs)
        return True

    async def edit_message_reply_markup(self, **kwargs):
        self._record("edit_message_reply_markup", kwargs)
        return True

    async def forward_message(self, **kwargs):
        self._record("forward_message", kwargs)
        return self._message(kwargs["chat_id"])

    async def send_poll(self, **kwargs):
        self._record("send_poll", kwargs)
        message = self._message(kwargs["chat_id"])
        self._next_poll_id += 1
        message.poll = SimpleNamespace(id=f"poll-{self._next_poll_id}")
        return message

    async def send_document(self, **kwargs):
        self._record("send_document", kwargs)
        return self._message(kwargs["chat_id"])

    async def answer_callback_query(self, **kwargs):
        self._record("answer_callback_query", kwargs)
        return True

    async def answer_inline_query(self, **kwargs):
        self._record("answer_inline_query", kwargs)
        return True

    async def get_file(self, file_id):
        self._record("get_file", {"file_id": file_id})
        return FakeFile(self.files[file_id])


def write_catalog(directory, items=None, categories=None, suppliers=None):
    for filename, data in (
        ("items.json", SAMPLE_ITEMS if items is None else items),
        ("categories.json", SAMPLE_CATEGORIES if categories is None else categories),
        ("suppliers.json", SAMPLE_SUPPLIERS if suppliers is None else suppliers),
    ):
        with open(os.path.join(directory, filename), "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Every test gets its own catalog directory."""
    write_catalog(str(tmp_path))
    monkeypatch.setattr(utils, "DATA_DIR", str(tmp_path))
    return tmp_path


@pytest.fixture
def bot(monkeypatch):
    fake = FakeBot()
    monkeypatch.setattr(utils, "_bot", fake)
    return fake


@pytest.fixture
def store():
    return PipelineStore()

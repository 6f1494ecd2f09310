"""
Key-value persistence for the khata stores.

Each store is written as one JSON text under a fixed key, the PIN as a
plain string under its own key. List records are wrapped in a versioned
envelope and validated against the schemas on load; anything missing or
unreadable loads as an empty list instead of failing.

Backends:
 - JsonFileStorage: one ``<key>.json`` file per key (default)
 - MongoStorage: one ``{_id: key, value: text}`` document per key,
   used when ``DATABASE_URL`` is set
 - MemoryStorage: plain dict, for tests and throwaway sessions
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

PRODUCTS_KEY = "ks_products"
CUSTOMERS_KEY = "ks_customers"
BILLS_KEY = "ks_bills"
PIN_KEY = "ks_pin"
ALL_KEYS = (PRODUCTS_KEY, CUSTOMERS_KEY, BILLS_KEY, PIN_KEY)

SCHEMA_VERSION = 1

M = TypeVar("M", bound=BaseModel)


class Storage:
    """Minimal key-value interface the stores are written against."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__


class MemoryStorage(Storage):
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)

    def describe(self) -> str:
        return "memory"


class JsonFileStorage(Storage):
    def __init__(self, directory) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(value, encoding="utf-8")

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()

    def describe(self) -> str:
        return f"files at {self.directory}"


class MongoStorage(Storage):
    """Keys live in a single collection, one document each."""

    def __init__(self, collection) -> None:
        self.collection = collection

    @classmethod
    def from_url(cls, url: str, database_name: str = "khata") -> "MongoStorage":
        from pymongo import MongoClient

        client = MongoClient(url)
        return cls(client[database_name]["kv"])

    def get(self, key: str) -> Optional[str]:
        doc = self.collection.find_one({"_id": key})
        return doc.get("value") if doc else None

    def set(self, key: str, value: str) -> None:
        self.collection.replace_one({"_id": key}, {"_id": key, "value": value}, upsert=True)

    def delete(self, key: str) -> None:
        self.collection.delete_one({"_id": key})

    def describe(self) -> str:
        return f"mongo collection {self.collection.name}"


def get_storage() -> Storage:
    """Pick the backend from the environment."""
    url = os.getenv("DATABASE_URL")
    if url:
        return MongoStorage.from_url(url, os.getenv("DATABASE_NAME", "khata"))
    return JsonFileStorage(os.getenv("KHATA_DATA_DIR", "data"))


# ----- Record (de)serialisation -----

def _decode_records(key: str, raw: str) -> List[dict]:
    try:
        payload = json.loads(raw)
    except ValueError:
        logger.warning("Unreadable JSON under %s; starting empty", key)
        return []
    if isinstance(payload, list):
        # Unversioned records written by the browser app.
        return payload
    if not isinstance(payload, dict) or not isinstance(payload.get("records"), list):
        logger.warning("Unexpected record shape under %s; starting empty", key)
        return []
    version = payload.get("version")
    if version != SCHEMA_VERSION:
        logger.warning("Unknown schema version %r under %s; starting empty", version, key)
        return []
    return payload["records"]


def load_records(storage: Storage, key: str, model: Type[M]) -> List[M]:
    raw = storage.get(key)
    if raw is None:
        return []
    records = []
    for index, item in enumerate(_decode_records(key, raw)):
        try:
            records.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning(
                "Dropping invalid record",
                extra={"extra": {"key": key, "index": index, "errors": e.error_count()}},
            )
    return records


def save_records(storage: Storage, key: str, records: List[BaseModel]) -> None:
    payload = {
        "version": SCHEMA_VERSION,
        "records": [r.model_dump(by_alias=True, mode="json") for r in records],
    }
    storage.set(key, json.dumps(payload, ensure_ascii=False))


def load_pin(storage: Storage) -> Optional[str]:
    raw = storage.get(PIN_KEY)
    if not raw:
        return None
    try:
        pin = json.loads(raw)
    except ValueError:
        # The browser app kept the bare string.
        return raw
    if isinstance(pin, int) and not isinstance(pin, bool):
        return raw
    if not isinstance(pin, str):
        logger.warning("Ignoring malformed PIN record")
        return None
    return pin or None


def save_pin(storage: Storage, pin: str) -> None:
    storage.set(PIN_KEY, json.dumps(pin))


def clear_all(storage: Storage) -> None:
    for key in ALL_KEYS:
        storage.delete(key)

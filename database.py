"""
Persistence for the tuition document

The document is stored whole, either as a JSON file (the default) or as a
single record in a MongoDB collection when DATABASE_URL is a mongodb URL.
Saving is best effort: TuitionStore swallows and logs failures.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from pymongo import MongoClient

from config import AppSettings
from normalizer import normalize
from store import TuitionStore

logger = logging.getLogger(__name__)

DOCUMENT_KEY = "tm:students-data"


class DocumentFormatError(ValueError):
    """Raised when an imported file is not valid JSON."""


def parse_document(text: str) -> Dict[str, Any]:
    try:
        raw = json.loads(text)
    except (TypeError, ValueError) as e:
        raise DocumentFormatError("This file is not valid JSON.") from e
    return normalize(raw)


def dump_document(doc: Dict[str, Any]) -> str:
    return json.dumps(doc, indent=2, ensure_ascii=False)


class FileStorage:
    """Keeps the document in one JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[Dict[str, Any]]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Reading {self.path} failed: {e}")
            return None
        try:
            return parse_document(text)
        except DocumentFormatError:
            logger.warning(f"Ignoring unreadable document at {self.path}")
            return None

    def save(self, doc: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".tuition-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(dump_document(doc))
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def describe(self) -> Dict[str, Any]:
        return {"backend": "file", "path": str(self.path), "exists": self.path.exists()}


class MongoStorage:
    """Keeps the document as a single record of a MongoDB collection."""

    def __init__(self, db, collection: str = "tuition", key: str = DOCUMENT_KEY):
        self.db = db
        self.collection = collection
        self.key = key

    def load(self) -> Optional[Dict[str, Any]]:
        record = self.db[self.collection].find_one({"_id": self.key})
        if not record:
            return None
        return normalize(record.get("document"))

    def save(self, doc: Dict[str, Any]) -> None:
        self.db[self.collection].replace_one({"_id": self.key}, {"_id": self.key, "document": doc}, upsert=True)

    def describe(self) -> Dict[str, Any]:
        return {"backend": "mongodb", "database": self.db.name, "collection": self.collection}


def get_storage(settings: Optional[AppSettings] = None):
    settings = settings or AppSettings()
    if settings.uses_mongo:
        client = MongoClient(settings.database_url)
        return MongoStorage(client[settings.database_name])
    return FileStorage(settings.data_path)


def load_store(settings: Optional[AppSettings] = None, storage=None) -> TuitionStore:
    storage = storage or get_storage(settings)
    try:
        document = storage.load()
    except Exception as e:
        logger.warning(f"Loading tuition document failed, starting empty: {e}")
        document = None
    store = TuitionStore(document, storage=storage)
    logger.info(
        f"Loaded {len(store.data['students'])} students, {len(store.data['enrollments'])} enrollments, "
        f"{len(store.data['classes'])} classes (local)"
    )
    return store


def import_document(store: TuitionStore, text: str) -> Dict[str, Any]:
    """Replace the store's document with ``text``; malformed JSON changes nothing."""
    raw = parse_document(text)
    return store.replace_document(raw, source="file")

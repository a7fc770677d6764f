"""
Document Store

Generic read/write-by-document storage used by the account, puzzle and
rotation collaborators. MongoDB backs production; an in-process store is used
when no MONGO_URI is configured and in tests.
"""

import copy
import threading
from typing import Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError
from pymongo.mongo_client import MongoClient
from pymongo.server_api import ServerApi

from ..utils.game_logger import game_logger

USERS_COLLECTION = 'users'
PUZZLES_COLLECTION = 'puzzles'
SERVER_STATUS_COLLECTION = 'server_status'

# Collection -> field holding the document key
KEY_FIELDS: Dict[str, str] = {
    USERS_COLLECTION: 'user_id',
    PUZZLES_COLLECTION: 'number',
    SERVER_STATUS_COLLECTION: 'name',
}


class PersistenceError(Exception):
    """Raised when the backing store cannot complete a read or write."""


def _key_field(collection: str) -> str:
    return KEY_FIELDS.get(collection, 'key')


class DocumentStore:
    """
    Interface of the document store.

    Writes are whole-document and last-write-wins; increment and
    clear_fields_if are the atomic read-modify-write primitives.
    """

    def read(self, collection: str, key) -> Optional[Dict]:
        raise NotImplementedError

    def write(self, collection: str, key, document: Dict) -> None:
        raise NotImplementedError

    def delete(self, collection: str, key) -> bool:
        raise NotImplementedError

    def read_all(self, collection: str) -> List[Dict]:
        raise NotImplementedError

    def increment(self, collection: str, key, field_name: str, amount: int = 1) -> int:
        """Atomically add amount to a numeric field, creating it at 0; returns the new value."""
        raise NotImplementedError

    def clear_fields_if(self, collection: str, key, expected: Dict, fields) -> bool:
        """
        Atomically set fields to None, only if the document still holds the
        expected values. Returns False when the document changed or is gone.
        """
        raise NotImplementedError

    def close(self) -> None:
        pass


class MongoDocumentStore(DocumentStore):
    """DocumentStore backed by a MongoDB database."""

    def __init__(self, mongo_uri: str, db_name: str):
        """
        Connect to MongoDB and prepare the key indexes.

        Args:
            mongo_uri: MongoDB connection string
            db_name: Database holding the game collections

        Raises:
            PersistenceError: If the server cannot be reached
        """
        self.client = MongoClient(mongo_uri, server_api=ServerApi('1'))
        self.db = self.client[db_name]

        try:
            self.client.admin.command('ping')
            game_logger.logger.info("Successfully connected to MongoDB!")

            for collection, key_field in KEY_FIELDS.items():
                self.db[collection].create_index(key_field, unique=True)
            self.db[USERS_COLLECTION].create_index("active_instance_id")
        except PyMongoError as e:
            self.client.close()
            raise PersistenceError(f"MongoDB connection error: {e}") from e

    def read(self, collection: str, key) -> Optional[Dict]:
        try:
            return self.db[collection].find_one({_key_field(collection): key}, {"_id": 0})
        except PyMongoError as e:
            raise PersistenceError(f"Read from {collection} failed: {e}") from e

    def write(self, collection: str, key, document: Dict) -> None:
        key_field = _key_field(collection)
        document = {**document, key_field: key}
        document.pop("_id", None)
        try:
            self.db[collection].replace_one({key_field: key}, document, upsert=True)
        except PyMongoError as e:
            raise PersistenceError(f"Write to {collection} failed: {e}") from e

    def delete(self, collection: str, key) -> bool:
        try:
            result = self.db[collection].delete_one({_key_field(collection): key})
            return result.deleted_count > 0
        except PyMongoError as e:
            raise PersistenceError(f"Delete from {collection} failed: {e}") from e

    def read_all(self, collection: str) -> List[Dict]:
        try:
            return list(self.db[collection].find({}, {"_id": 0}))
        except PyMongoError as e:
            raise PersistenceError(f"Scan of {collection} failed: {e}") from e

    def increment(self, collection: str, key, field_name: str, amount: int = 1) -> int:
        try:
            document = self.db[collection].find_one_and_update(
                {_key_field(collection): key},
                {"$inc": {field_name: amount}},
                upsert=True,
                return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise PersistenceError(f"Increment of {collection}.{field_name} failed: {e}") from e
        return document[field_name]

    def clear_fields_if(self, collection: str, key, expected: Dict, fields) -> bool:
        try:
            result = self.db[collection].update_one(
                {**expected, _key_field(collection): key},
                {"$set": {field_name: None for field_name in fields}}
            )
        except PyMongoError as e:
            raise PersistenceError(f"Conditional update of {collection} failed: {e}") from e
        return result.modified_count > 0

    def close(self) -> None:
        """Close the MongoDB connection."""
        if self.client:
            self.client.close()


class MemoryDocumentStore(DocumentStore):
    """Process-local DocumentStore; documents are copied in and out."""

    def __init__(self):
        self._collections: Dict[str, Dict] = {}
        self._lock = threading.Lock()

    def read(self, collection: str, key) -> Optional[Dict]:
        with self._lock:
            document = self._collections.get(collection, {}).get(key)
            return copy.deepcopy(document)

    def write(self, collection: str, key, document: Dict) -> None:
        with self._lock:
            stored = copy.deepcopy(document)
            stored[_key_field(collection)] = key
            self._collections.setdefault(collection, {})[key] = stored

    def delete(self, collection: str, key) -> bool:
        with self._lock:
            return self._collections.get(collection, {}).pop(key, None) is not None

    def read_all(self, collection: str) -> List[Dict]:
        with self._lock:
            return [copy.deepcopy(doc) for doc in self._collections.get(collection, {}).values()]

    def increment(self, collection: str, key, field_name: str, amount: int = 1) -> int:
        with self._lock:
            documents = self._collections.setdefault(collection, {})
            document = documents.setdefault(key, {_key_field(collection): key})
            document[field_name] = document.get(field_name, 0) + amount
            return document[field_name]

    def clear_fields_if(self, collection: str, key, expected: Dict, fields) -> bool:
        with self._lock:
            document = self._collections.get(collection, {}).get(key)
            if document is None:
                return False
            if any(document.get(name) != value for name, value in expected.items()):
                return False
            for field_name in fields:
                document[field_name] = None
            return True


def create_store(mongo_uri: Optional[str], db_name: str) -> DocumentStore:
    """Mongo store when a URI is configured, otherwise the in-memory store."""
    if mongo_uri:
        return MongoDocumentStore(mongo_uri, db_name)
    game_logger.logger.warning("MONGO_URI not set, using in-memory document store")
    return MemoryDocumentStore()

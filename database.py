"""
Document store access: MongoDB for deployments and an in-memory double for
development and tests. Both validate records against the schemas before
writing, so a missing or malformed field raises pydantic.ValidationError.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol, Type

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import AsyncMongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError

from config import Settings
from errors import ConfigurationError
from schemas import ContactDetail, NotificationSubscriber, TrialStudent, WebsiteSetting

logger = logging.getLogger(__name__)

TRIAL_STUDENTS = "trialstudent"
CONTACT_DETAILS = "contactdetail"
WEBSITE_SETTINGS = "websitesetting"
SUBSCRIBERS = "notificationsubscriber"

LEAD_SCHEMAS: Dict[str, Type[BaseModel]] = {
    TRIAL_STUDENTS: TrialStudent,
    CONTACT_DETAILS: ContactDetail,
}

# Fixed key so the settings upsert can never create a second document.
SETTINGS_ID = "site"


class DbClient(Protocol):
    """Interface the routes and the broadcaster need from the store."""

    async def create_lead(self, collection: str, fields: dict) -> dict:
        ...

    async def list_leads(self, collection: str) -> list[dict]:
        ...

    async def count_leads(self, collection: str) -> int:
        ...

    async def delete_lead(self, collection: str, lead_id: str) -> Optional[dict]:
        ...

    async def get_settings(self) -> WebsiteSetting:
        ...

    async def update_settings(self, fields: dict) -> WebsiteSetting:
        ...

    async def upsert_subscription(self, subscription: dict) -> NotificationSubscriber:
        ...

    async def delete_subscription(self, endpoint: str) -> bool:
        ...

    async def delete_all_subscriptions(self) -> int:
        ...

    async def list_subscriptions(self) -> list[NotificationSubscriber]:
        ...

    async def collection_names(self) -> list[str]:
        ...

    async def close(self) -> None:
        ...


def validate_lead(collection: str, fields: dict) -> dict:
    try:
        schema = LEAD_SCHEMAS[collection]
    except KeyError:
        raise ValueError(f"Unknown lead collection: {collection}") from None
    return schema.model_validate(fields).model_dump(mode="json")


def parse_object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def doc_to_out(doc: dict) -> dict:
    out = {k: v for k, v in doc.items() if k != "_id"}
    out["id"] = str(doc["_id"])
    return out


class InMemoryDbClient:
    """Dict-backed store with the same semantics as MongoDbClient."""

    def __init__(self):
        self.leads: Dict[str, Dict[ObjectId, dict]] = {name: {} for name in LEAD_SCHEMAS}
        self.settings: Optional[dict] = None
        self.subscriptions: Dict[str, dict] = {}

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        for docs in self.leads.values():
            docs.clear()
        self.settings = None
        self.subscriptions.clear()

    async def create_lead(self, collection: str, fields: dict) -> dict:
        doc = validate_lead(collection, fields)
        doc["_id"] = ObjectId()
        self.leads[collection][doc["_id"]] = doc
        return doc_to_out(doc)

    async def list_leads(self, collection: str) -> list[dict]:
        return [doc_to_out(doc) for doc in self.leads[collection].values()]

    async def count_leads(self, collection: str) -> int:
        return len(self.leads[collection])

    async def delete_lead(self, collection: str, lead_id: str) -> Optional[dict]:
        oid = parse_object_id(lead_id)
        if oid is None:
            return None
        doc = self.leads[collection].pop(oid, None)
        return doc_to_out(doc) if doc else None

    async def get_settings(self) -> WebsiteSetting:
        if self.settings is None:
            self.settings = WebsiteSetting().to_document()
        return WebsiteSetting.model_validate(self.settings)

    async def update_settings(self, fields: dict) -> WebsiteSetting:
        settings = WebsiteSetting.model_validate(fields)
        self.settings = settings.to_document()
        return settings

    async def upsert_subscription(self, subscription: dict) -> NotificationSubscriber:
        record = NotificationSubscriber.model_validate(subscription)
        existing = self.subscriptions.get(record.endpoint)
        if existing:
            record.createdAt = existing["createdAt"]
        self.subscriptions[record.endpoint] = record.model_dump()
        return record

    async def delete_subscription(self, endpoint: str) -> bool:
        return self.subscriptions.pop(endpoint, None) is not None

    async def delete_all_subscriptions(self) -> int:
        count = len(self.subscriptions)
        self.subscriptions.clear()
        return count

    async def list_subscriptions(self) -> list[NotificationSubscriber]:
        return [NotificationSubscriber.model_validate(doc) for doc in self.subscriptions.values()]

    async def collection_names(self) -> list[str]:
        names = [name for name, docs in self.leads.items() if docs]
        if self.settings is not None:
            names.append(WEBSITE_SETTINGS)
        if self.subscriptions:
            names.append(SUBSCRIBERS)
        return names

    async def close(self) -> None:
        return None


class MongoDbClient:
    """
    pymongo asyncio-backed implementation. The client connects lazily, so
    constructing it never blocks startup.
    """

    def __init__(self, database_url: str, database_name: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for MongoDbClient")
        self.client = AsyncMongoClient(database_url, serverSelectionTimeoutMS=5000)
        self.db = self.client[database_name]

    async def ensure_indexes(self) -> None:
        await self.db[SUBSCRIBERS].create_index("endpoint", unique=True)

    async def create_lead(self, collection: str, fields: dict) -> dict:
        doc = validate_lead(collection, fields)
        result = await self.db[collection].insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc_to_out(doc)

    async def list_leads(self, collection: str) -> list[dict]:
        docs = await self.db[collection].find().sort("_id", 1).to_list(None)
        return [doc_to_out(doc) for doc in docs]

    async def count_leads(self, collection: str) -> int:
        return await self.db[collection].count_documents({})

    async def delete_lead(self, collection: str, lead_id: str) -> Optional[dict]:
        oid = parse_object_id(lead_id)
        if oid is None:
            return None
        doc = await self.db[collection].find_one_and_delete({"_id": oid})
        return doc_to_out(doc) if doc else None

    async def _upsert_settings(self, update: dict) -> dict:
        try:
            return await self.db[WEBSITE_SETTINGS].find_one_and_update(
                {"_id": SETTINGS_ID},
                update,
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # Lost the insert race; the document exists now.
            return await self.db[WEBSITE_SETTINGS].find_one_and_update(
                {"_id": SETTINGS_ID}, update, return_document=ReturnDocument.AFTER
            )

    async def get_settings(self) -> WebsiteSetting:
        doc = await self._upsert_settings({"$setOnInsert": WebsiteSetting().to_document()})
        return WebsiteSetting.model_validate(doc)

    async def update_settings(self, fields: dict) -> WebsiteSetting:
        settings = WebsiteSetting.model_validate(fields)
        doc = await self._upsert_settings({"$set": settings.to_document()})
        return WebsiteSetting.model_validate(doc)

    async def upsert_subscription(self, subscription: dict) -> NotificationSubscriber:
        record = NotificationSubscriber.model_validate(subscription)
        update = {
            "$set": {"keys": record.keys.model_dump()},
            "$setOnInsert": {"createdAt": record.createdAt},
        }
        collection = self.db[SUBSCRIBERS]
        try:
            doc = await collection.find_one_and_update(
                {"endpoint": record.endpoint},
                update,
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            doc = await collection.find_one_and_update(
                {"endpoint": record.endpoint}, update, return_document=ReturnDocument.AFTER
            )
        return NotificationSubscriber.model_validate(doc)

    async def delete_subscription(self, endpoint: str) -> bool:
        result = await self.db[SUBSCRIBERS].delete_one({"endpoint": endpoint})
        return result.deleted_count > 0

    async def delete_all_subscriptions(self) -> int:
        result = await self.db[SUBSCRIBERS].delete_many({})
        return result.deleted_count

    async def list_subscriptions(self) -> list[NotificationSubscriber]:
        docs = await self.db[SUBSCRIBERS].find().to_list(None)
        return [NotificationSubscriber.model_validate(doc) for doc in docs]

    async def collection_names(self) -> list[str]:
        return await self.db.list_collection_names()

    async def close(self) -> None:
        await self.client.close()


def create_db_client(settings: Settings) -> DbClient:
    """MongoDB from DATABASE_URL. The in-memory store must be asked for explicitly."""
    if settings.use_in_memory_backends:
        logger.warning("USE_IN_MEMORY_BACKENDS is set; data will not survive a restart")
        return InMemoryDbClient()
    if not settings.database_url:
        raise ConfigurationError("Missing DATABASE_URL in environment")
    return MongoDbClient(settings.database_url, settings.database_name)

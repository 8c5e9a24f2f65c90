"""
Database helpers

MongoDB connection plus the small helpers the route handlers use to write
documents. Collection names are the lowercase schema class names:
- User -> "user"
- BlogCollection -> "blogcollection"
- Article -> "article"
"""
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import get_settings

logger = logging.getLogger(__name__)

USERS = "user"
COLLECTIONS = "blogcollection"
ARTICLES = "article"

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]
OLDEST_FIRST = [("created_at", ASCENDING), ("_id", ASCENDING)]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@lru_cache
def get_client() -> MongoClient:
    settings = get_settings()
    return MongoClient(settings.database_url, tz_aware=True)


def get_db() -> Database:
    """FastAPI dependency returning the configured database."""
    return get_client()[get_settings().database_name]


def prepare_document(data: Union[BaseModel, dict]) -> dict:
    """Dump a schema instance and stamp created_at/updated_at."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(by_alias=True)
    else:
        data_dict = dict(data)
    now = utc_now()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    return data_dict


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    result = db[collection_name].insert_one(prepare_document(data))
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    skip: int = 0,
    sort=None,
) -> list:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(db: Database) -> None:
    db[USERS].create_index("email", unique=True)
    db[USERS].create_index("username", unique=True)
    db[COLLECTIONS].create_index("slug", unique=True)
    db[COLLECTIONS].create_index("subdomain", unique=True)
    db[COLLECTIONS].create_index("owner_id")
    db[ARTICLES].create_index([("collection_id", ASCENDING), ("slug", ASCENDING)], unique=True)
    logger.info("Indexes ensured on %s", db.name)

"""
Lookups, ownership checks and response shaping shared by the route handlers.

Documents are stored snake_case; everything returned from here to a client
uses the camelCase names the browser app reads.
"""
import math
from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from pymongo.database import Database

from database import ARTICLES, COLLECTIONS, OLDEST_FIRST, USERS
from errors import Forbidden, NotFound, Unauthenticated
from schemas import SHARE_PLATFORMS, CurrentUser


def parse_object_id(value: str) -> Optional[ObjectId]:
    if value and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def _iso(value):
    return value.isoformat() if value else None


# Serializers

def user_to_public(doc: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "email": doc.get("email"),
        "name": doc.get("name"),
        "username": doc.get("username"),
    }


def article_to_public(doc: dict) -> dict:
    shares = doc.get("shares") or {}
    return {
        "id": str(doc["_id"]),
        "collectionId": str(doc["collection_id"]),
        "title": doc.get("title"),
        "slug": doc.get("slug"),
        "content": doc.get("content"),
        "shareCount": doc.get("share_count", 0),
        "shares": {platform: shares.get(platform, 0) for platform in SHARE_PLATFORMS},
        "createdAt": _iso(doc.get("created_at")),
        "updatedAt": _iso(doc.get("updated_at")),
    }


def collection_to_public(doc: dict, owner_username: Optional[str], articles: List[dict]) -> dict:
    return {
        "id": str(doc["_id"]),
        "name": doc.get("name"),
        "slug": doc.get("slug"),
        "subdomain": doc.get("subdomain"),
        "description": doc.get("description"),
        "ownerId": str(doc["owner_id"]),
        "ownerUsername": owner_username,
        "isPublic": doc.get("is_public", True),
        "coverImage": doc.get("cover_image"),
        "articles": [article_to_public(a) for a in articles],
        "articleCount": len(articles),
        "createdAt": _iso(doc.get("created_at")),
        "updatedAt": _iso(doc.get("updated_at")),
    }


def listing_item(article: dict, collection: dict, owner_username: Optional[str]) -> dict:
    """One entry of the flattened article listing."""
    return {
        "collectionId": str(collection["_id"]),
        "collectionName": collection.get("name"),
        "collectionSlug": collection.get("slug"),
        "ownerUsername": owner_username,
        "articleId": str(article["_id"]),
        "title": article.get("title"),
        "slug": article.get("slug"),
        "content": article.get("content"),
        "createdAt": _iso(article.get("created_at")),
        "updatedAt": _iso(article.get("updated_at")),
        "shareCount": article.get("share_count", 0),
    }


# Lookups

def find_user_by_username(db: Database, username: str) -> dict:
    user = db[USERS].find_one({"username": (username or "").lower()})
    if not user:
        raise NotFound("User not found", f"No user with username '{username}'")
    return user


def owner_usernames(db: Database, owner_ids: Iterable) -> Dict[ObjectId, str]:
    """Resolve owner ids to their current usernames in one query."""
    ids = list({oid for oid in owner_ids if oid is not None})
    if not ids:
        return {}
    users = db[USERS].find({"_id": {"$in": ids}}, {"username": 1})
    return {u["_id"]: u.get("username") for u in users}


def find_collection(db: Database, collection_id: str) -> dict:
    oid = parse_object_id(collection_id)
    collection = db[COLLECTIONS].find_one({"_id": oid}) if oid else None
    if not collection:
        raise NotFound("Blog collection not found", "The specified blog collection does not exist")
    return collection


def find_collection_by_subdomain(db: Database, subdomain: str) -> dict:
    collection = db[COLLECTIONS].find_one({"subdomain": (subdomain or "").lower()})
    if not collection:
        raise NotFound("Blog collection not found", f"No blog collection at subdomain '{subdomain}'")
    return collection


def articles_by_collection(db: Database, collection_ids: List[ObjectId]) -> Dict[ObjectId, List[dict]]:
    grouped = {cid: [] for cid in collection_ids}
    if collection_ids:
        cursor = db[ARTICLES].find({"collection_id": {"$in": collection_ids}}).sort(OLDEST_FIRST)
        for article in cursor:
            grouped.setdefault(article["collection_id"], []).append(article)
    return grouped


def find_article(db: Database, collection_id: ObjectId, slug: str) -> dict:
    article = db[ARTICLES].find_one({"collection_id": collection_id, "slug": slug})
    if not article:
        raise NotFound("Article not found", "The specified article does not exist in this collection")
    return article


def present_collections(db: Database, collections: List[dict]) -> List[dict]:
    """Serialize collections with their articles and current owner names."""
    usernames = owner_usernames(db, (c.get("owner_id") for c in collections))
    articles = articles_by_collection(db, [c["_id"] for c in collections])
    return [
        collection_to_public(c, usernames.get(c.get("owner_id")), articles.get(c["_id"], []))
        for c in collections
    ]


def present_collection(db: Database, collection: dict) -> dict:
    return present_collections(db, [collection])[0]


# Access rules

def is_owner(collection: dict, user: Optional[CurrentUser]) -> bool:
    return user is not None and str(collection.get("owner_id")) == user.id


def require_owner(collection: dict, user: CurrentUser, action: str) -> None:
    if not is_owner(collection, user):
        raise Forbidden("Not authorized", f"You can only {action} your own blog collections")


def require_visible(collection: dict, viewer: Optional[CurrentUser]) -> None:
    """Private collections are readable by their owner only."""
    if collection.get("is_public", True):
        return
    if viewer is None:
        raise Unauthenticated("Please authenticate", "This blog collection is private")
    if not is_owner(collection, viewer):
        raise Forbidden("Not authorized", "This blog collection is private")


# Writes

def increment_share(db: Database, collection_id: ObjectId, slug: str, platform: Optional[str]) -> bool:
    """Bump the share counters of one article; False if it does not exist."""
    inc = {"share_count": 1}
    if platform in SHARE_PLATFORMS:
        inc[f"shares.{platform}"] = 1
    result = db[ARTICLES].update_one({"collection_id": collection_id, "slug": slug}, {"$inc": inc})
    return result.matched_count > 0


# Pagination

def page_window(page: int, limit: int):
    return (page - 1) * limit, limit


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0

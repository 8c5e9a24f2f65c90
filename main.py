import logging
import re
from contextlib import asynccontextmanager
from typing import Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import store
from auth import (
    bearer_token,
    create_token,
    decode_token,
    get_current_user,
    get_optional_user,
    hash_password,
    load_user,
    verify_password,
)
from config import DEFAULT_JWT_SECRET, get_settings
from database import (
    ARTICLES,
    COLLECTIONS,
    NEWEST_FIRST,
    USERS,
    create_document,
    ensure_indexes,
    get_db,
    get_documents,
    prepare_document,
    utc_now,
)
from errors import APIError, Conflict, Gone, NotFound, Unauthenticated, ValidationFailed
from schemas import Article as ArticleSchema, BlogCollection as BlogCollectionSchema, CurrentUser, User as UserSchema
from slugs import derive_subdomain, insert_with_unique_slug, subdomain_problem, update_with_unique_slug

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if get_settings().jwt_secret == DEFAULT_JWT_SECRET:
        logger.warning("JWT_SECRET is not set, tokens are signed with the development secret")
    try:
        ensure_indexes(get_db())
    except PyMongoError as e:
        logger.error("Could not ensure indexes: %s", e)
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# Error handlers

@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        message = err.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.append({"field": ".".join(loc), "message": message})
    first = errors[0] if errors else {"field": "", "message": "Invalid request"}
    error = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
    return JSONResponse(
        status_code=400,
        content={"message": "Validation failed", "error": error, "errors": errors},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error", "error": str(exc)})


# Health
@app.get("/")
def read_root():
    return {"message": "Blogify API running"}

@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    status = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": db.name,
        "collections": []
    }
    try:
        cols = db.list_collection_names()
        status["database"] = "✅ Connected"
        status["collections"] = cols
    except PyMongoError as e:
        status["database"] = f"❌ Error: {str(e)[:80]}"
    return status

# Auth
USERNAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


def _strip(value):
    return value.strip() if isinstance(value, str) else value


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    name: str
    username: str

    @field_validator("email", "name", "username", mode="before")
    @classmethod
    def strip_text(cls, value):
        return _strip(value)

    @field_validator("password")
    @classmethod
    def password_length(cls, value):
        if len(value) < 6:
            raise ValueError("Password must be at least 6 characters long")
        return value

    @field_validator("name")
    @classmethod
    def name_required(cls, value):
        if not value:
            raise ValueError("Name is required")
        return value

    @field_validator("username")
    @classmethod
    def username_format(cls, value):
        if not USERNAME_RE.match(value):
            raise ValueError("Username can only contain letters, numbers, underscores and hyphens")
        return value


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


def _auth_response(user_id: str, user: dict) -> dict:
    return {"token": create_token(user_id), "user": store.user_to_public(user)}


@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    email = payload.email.lower()
    username = payload.username.lower()
    users = db[USERS]
    if users.find_one({"email": email}):
        logger.info("Registration failed: email %s already exists", email)
        raise ValidationFailed("Registration failed", "User with this email already exists")
    if users.find_one({"username": username}):
        logger.info("Registration failed: username %s already exists", username)
        raise ValidationFailed("Registration failed", "Username is already taken")

    user = UserSchema(
        email=email,
        password_hash=hash_password(payload.password),
        name=payload.name,
        username=username,
    )
    try:
        user_id = create_document(db, USERS, user)
    except DuplicateKeyError:
        raise ValidationFailed("Registration failed", "User with this email or username already exists")

    logger.info("User registered: %s (%s)", email, username)
    return _auth_response(user_id, {"_id": user_id, **user.model_dump()})

@app.post("/api/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    email = payload.email.strip().lower()
    user = db[USERS].find_one({"email": email})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        logger.info("Login failed for %s", email)
        raise Unauthenticated("Login failed", "Invalid email or password")
    logger.info("User logged in: %s", email)
    return _auth_response(str(user["_id"]), user)

@app.get("/api/auth/me")
def me(authorization: Optional[str] = Header(None), db: Database = Depends(get_db)):
    user = load_user(db, decode_token(bearer_token(authorization)))
    if not user:
        raise NotFound("User not found", "User associated with this token no longer exists")
    return {"user": store.user_to_public(user)}

# Blog collections
COVER_IMAGE_RE = re.compile(r"^https?://\S+$")


class CollectionFields(BaseModel):
    """Validation shared by collection create and update bodies."""

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("name", "description", mode="before", check_fields=False)
    @classmethod
    def strip_text(cls, value):
        return _strip(value)

    @field_validator("subdomain", "cover_image", mode="before", check_fields=False)
    @classmethod
    def blank_to_none(cls, value):
        value = _strip(value)
        return value or None

    @field_validator("name", check_fields=False)
    @classmethod
    def name_length(cls, value):
        if value is None:
            return value
        if len(value) < 3:
            raise ValueError("Blog name must be at least 3 characters")
        if len(value) > 50:
            raise ValueError("Blog name must be at most 50 characters")
        return value

    @field_validator("description", check_fields=False)
    @classmethod
    def description_length(cls, value):
        if value is None:
            return value
        if len(value) < 10:
            raise ValueError("Description must be at least 10 characters")
        if len(value) > 500:
            raise ValueError("Description must be at most 500 characters")
        return value

    @field_validator("subdomain", check_fields=False)
    @classmethod
    def subdomain_format(cls, value):
        if value is None:
            return value
        value = value.lower()
        problem = subdomain_problem(value)
        if problem:
            raise ValueError(problem)
        return value

    @field_validator("cover_image", check_fields=False)
    @classmethod
    def cover_image_url(cls, value):
        if value is not None and not COVER_IMAGE_RE.match(value):
            raise ValueError("Cover image must be a valid http(s) URL")
        return value


class CollectionCreate(CollectionFields):
    name: str
    description: str
    is_public: bool = Field(True, alias="isPublic")
    cover_image: Optional[str] = Field(None, alias="coverImage")
    subdomain: Optional[str] = None


class CollectionUpdate(CollectionFields):
    name: Optional[str] = None
    description: Optional[str] = None
    is_public: Optional[bool] = Field(None, alias="isPublic")
    cover_image: Optional[str] = Field(None, alias="coverImage")
    subdomain: Optional[str] = None


def _subdomain_taken(subdomain: str) -> Conflict:
    return Conflict("Subdomain already taken", f"The subdomain '{subdomain}' is already taken")


@app.get("/api/blog-collections")
def list_collections(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    filt = {"is_public": True}
    skip, limit = store.page_window(page, limit)
    docs = get_documents(db, COLLECTIONS, filt, limit=limit, skip=skip, sort=NEWEST_FIRST)
    total = db[COLLECTIONS].count_documents(filt)
    return {
        "collections": store.present_collections(db, docs),
        "currentPage": page,
        "totalPages": store.page_count(total, limit),
        "totalCollections": total,
    }

@app.post("/api/blog-collections", status_code=201)
def create_collection(
    payload: CollectionCreate,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    subdomain = payload.subdomain or derive_subdomain(payload.name)
    collections = db[COLLECTIONS]
    if collections.find_one({"subdomain": subdomain}, {"_id": 1}):
        logger.info("Collection create rejected: subdomain %s taken", subdomain)
        raise _subdomain_taken(subdomain)

    record = BlogCollectionSchema(
        name=payload.name,
        subdomain=subdomain,
        description=payload.description,
        owner_id=ObjectId(user.id),
        is_public=payload.is_public,
        cover_image=payload.cover_image,
    )
    document = prepare_document(record)
    try:
        insert_with_unique_slug(collections, document, payload.name, fallback="blog")
    except DuplicateKeyError:
        raise _subdomain_taken(subdomain)

    logger.info("Blog collection created: %s (%s) by %s", payload.name, subdomain, user.username)
    return store.present_collection(db, document)

@app.get("/api/blog-collections/my-collections")
def my_collections(user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    docs = get_documents(db, COLLECTIONS, {"owner_id": ObjectId(user.id)}, sort=NEWEST_FIRST)
    return store.present_collections(db, docs)

@app.get("/api/blog-collections/by-subdomain/{subdomain}")
def get_collection_by_subdomain(
    subdomain: str,
    viewer: Optional[CurrentUser] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    collection = store.find_collection_by_subdomain(db, subdomain)
    store.require_visible(collection, viewer)
    return store.present_collection(db, collection)

@app.get("/api/blog-collections/{collection_id}")
def get_collection(
    collection_id: str,
    viewer: Optional[CurrentUser] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    collection = store.find_collection(db, collection_id)
    store.require_visible(collection, viewer)
    return store.present_collection(db, collection)

@app.put("/api/blog-collections/{collection_id}")
def update_collection(
    collection_id: str,
    payload: CollectionUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    collections = db[COLLECTIONS]
    collection = store.find_collection(db, collection_id)
    store.require_owner(collection, user, "update")

    changes = {}
    if payload.name is not None:
        changes["name"] = payload.name
    if payload.description is not None:
        changes["description"] = payload.description
    if payload.is_public is not None:
        changes["is_public"] = payload.is_public
    if "cover_image" in payload.model_fields_set:
        changes["cover_image"] = payload.cover_image
    subdomain = payload.subdomain
    if subdomain and subdomain != collection.get("subdomain"):
        if collections.find_one({"subdomain": subdomain, "_id": {"$ne": collection["_id"]}}, {"_id": 1}):
            raise _subdomain_taken(subdomain)
        changes["subdomain"] = subdomain
    changes["updated_at"] = utc_now()

    try:
        if "name" in changes and changes["name"] != collection.get("name"):
            update_with_unique_slug(
                collections,
                collection["_id"],
                changes,
                changes["name"],
                fallback="blog",
                current_slug=collection.get("slug"),
            )
        else:
            collections.update_one({"_id": collection["_id"]}, {"$set": changes})
    except DuplicateKeyError:
        raise _subdomain_taken(subdomain)

    logger.info("Blog collection updated: %s by %s", collection["_id"], user.username)
    return store.present_collection(db, collections.find_one({"_id": collection["_id"]}))

@app.delete("/api/blog-collections/{collection_id}")
def delete_collection(
    collection_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    collection = store.find_collection(db, collection_id)
    store.require_owner(collection, user, "delete")
    db[COLLECTIONS].delete_one({"_id": collection["_id"]})
    removed = db[ARTICLES].delete_many({"collection_id": collection["_id"]}).deleted_count
    logger.info(
        "Blog collection deleted: %s (%d articles) by %s",
        collection.get("name"), removed, user.username,
    )
    return {"message": "Blog collection deleted successfully"}

# Articles
class ArticleCreate(BaseModel):
    title: str
    content: str

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, value):
        return _strip(value)

    @field_validator("title")
    @classmethod
    def title_length(cls, value):
        if value is not None and not 3 <= len(value) <= 100:
            raise ValueError("Title must be between 3 and 100 characters")
        return value

    @field_validator("content")
    @classmethod
    def content_length(cls, value):
        if value is not None and len(value.strip()) < 10:
            raise ValueError("Content must be at least 10 characters long")
        return value


class ArticleUpdate(ArticleCreate):
    title: Optional[str] = None
    content: Optional[str] = None


class ShareRequest(BaseModel):
    platform: Optional[str] = None


def _article_listing(db: Database, collection_filter: dict, page: int, limit: int, search: Optional[str]) -> dict:
    collections = {
        c["_id"]: c
        for c in db[COLLECTIONS].find(collection_filter, {"name": 1, "slug": 1, "owner_id": 1})
    }
    article_filter = {"collection_id": {"$in": list(collections)}}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        article_filter["$or"] = [{"title": pattern}, {"content": pattern}]

    skip, limit = store.page_window(page, limit)
    total = db[ARTICLES].count_documents(article_filter)
    articles = get_documents(db, ARTICLES, article_filter, limit=limit, skip=skip, sort=NEWEST_FIRST)
    usernames = store.owner_usernames(db, (collections[a["collection_id"]].get("owner_id") for a in articles))
    items = []
    for article in articles:
        collection = collections[article["collection_id"]]
        items.append(store.listing_item(article, collection, usernames.get(collection.get("owner_id"))))

    logger.info("Retrieved %d articles (page %d, limit %d)", len(items), page, limit)
    return {
        "articles": items,
        "currentPage": page,
        "totalPages": store.page_count(total, limit),
        "totalArticles": total,
    }


@app.get("/api/blogs")
def list_articles(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    db: Database = Depends(get_db),
):
    return _article_listing(db, {"is_public": True}, page, limit, search)

@app.get("/api/blogs/user/{username}")
def list_user_articles(
    username: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    user = store.find_user_by_username(db, username)
    return _article_listing(db, {"is_public": True, "owner_id": user["_id"]}, page, limit, None)

@app.get("/api/blogs/{collection_id}/{article_slug}")
def get_article(
    collection_id: str,
    article_slug: str,
    viewer: Optional[CurrentUser] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    collection = store.find_collection(db, collection_id)
    store.require_visible(collection, viewer)
    article = store.find_article(db, collection["_id"], article_slug)
    usernames = store.owner_usernames(db, [collection.get("owner_id")])
    return {
        "article": store.article_to_public(article),
        "collectionName": collection.get("name"),
        "ownerUsername": usernames.get(collection.get("owner_id")),
    }

@app.post("/api/blogs/{collection_id}", status_code=201)
def create_article(
    collection_id: str,
    payload: ArticleCreate,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    collection = store.find_collection(db, collection_id)
    store.require_owner(collection, user, "create articles in")

    record = ArticleSchema(collection_id=collection["_id"], title=payload.title, content=payload.content)
    document = prepare_document(record)
    insert_with_unique_slug(db[ARTICLES], document, payload.title, scope={"collection_id": collection["_id"]})

    logger.info("New article created: %s in blog collection: %s", payload.title, collection.get("name"))
    return {
        "article": store.article_to_public(document),
        "collectionName": collection.get("name"),
        "collectionSlug": collection.get("slug"),
        "subdomain": collection.get("subdomain"),
    }

@app.patch("/api/blogs/{collection_id}/{article_slug}")
def update_article(
    collection_id: str,
    article_slug: str,
    payload: ArticleUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    collection = store.find_collection(db, collection_id)
    store.require_owner(collection, user, "update articles in")
    article = store.find_article(db, collection["_id"], article_slug)

    changes = {"updated_at": utc_now()}
    if payload.content is not None:
        changes["content"] = payload.content
    retitled = payload.title is not None and payload.title != article.get("title")
    if payload.title is not None:
        changes["title"] = payload.title

    if retitled:
        update_with_unique_slug(
            db[ARTICLES],
            article["_id"],
            changes,
            payload.title,
            scope={"collection_id": collection["_id"]},
            current_slug=article.get("slug"),
        )
    else:
        db[ARTICLES].update_one({"_id": article["_id"]}, {"$set": changes})

    updated = db[ARTICLES].find_one({"_id": article["_id"]})
    logger.info("Article updated: %s", updated.get("title"))
    return {"article": store.article_to_public(updated), "collectionName": collection.get("name")}

@app.delete("/api/blogs/{collection_id}/{article_slug}")
def delete_article(
    collection_id: str,
    article_slug: str,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    collection = store.find_collection(db, collection_id)
    store.require_owner(collection, user, "delete articles in")
    article = store.find_article(db, collection["_id"], article_slug)
    db[ARTICLES].delete_one({"_id": article["_id"]})
    logger.info("Article deleted: %s", article.get("title"))
    return {"message": "Article deleted successfully"}

@app.post("/api/blogs/{collection_id}/{article_slug}/share")
def share_article(
    collection_id: str,
    article_slug: str,
    payload: Optional[ShareRequest] = None,
    db: Database = Depends(get_db),
):
    collection = store.find_collection(db, collection_id)
    platform = payload.platform if payload else None
    if not store.increment_share(db, collection["_id"], article_slug, platform):
        raise NotFound("Article not found", "The specified article does not exist in this collection")
    return {"message": "Share count updated successfully"}

@app.get("/api/blogs/{legacy_id}")
def legacy_article(legacy_id: str, db: Database = Depends(get_db)):
    """Old single-id article URLs: point at the new location when possible."""
    logger.info("[LEGACY ACCESS] Blog ID route accessed: %s", legacy_id)
    oid = store.parse_object_id(legacy_id)
    article = db[ARTICLES].find_one({"_id": oid}) if oid else None
    collection = db[COLLECTIONS].find_one({"_id": article["collection_id"]}) if article else None
    if collection:
        return JSONResponse(
            status_code=301,
            content={
                "code": "REDIRECT_TO_NEW_FORMAT",
                "message": "This article is now available at a new URL",
                "newUrl": f"/blogs/{collection['_id']}/{article['slug']}",
                "collectionId": str(collection["_id"]),
                "articleSlug": article["slug"],
                "collectionName": collection.get("name"),
            },
        )
    raise Gone(
        f"The blog ID format {legacy_id} you're using is deprecated",
        "This endpoint is no longer supported. Blogs are now accessed via collection ID "
        "and article slug: /api/blogs/:collectionId/:articleSlug",
        code="API_STRUCTURE_CHANGED",
        legacyId=legacy_id,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)

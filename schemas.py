"""
Database Schemas for the blogify app

Each Pydantic model corresponds to a MongoDB collection.
The collection name is the lowercase of the class name.

Collections:
- User: authentication + identity
- BlogCollection: a named, owned group of articles bound to a subdomain
- Article: one post, always reached through its collection
"""
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional
from bson import ObjectId

SHARE_PLATFORMS = ("twitter", "facebook", "linkedin", "copyLink")


class User(BaseModel):
    email: EmailStr = Field(..., description="Login email, stored lowercase")
    password_hash: str = Field(..., description="Hashed password")
    name: str = Field(..., description="Display name")
    username: str = Field(..., pattern=r"^[a-zA-Z0-9_-]+$", description="Public author handle")


class BlogCollection(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(..., min_length=3, max_length=50)
    slug: Optional[str] = Field(None, description="Assigned at insert time, unique")
    subdomain: str = Field(..., pattern=r"^[a-z0-9-]+$", min_length=3, max_length=30)
    description: str
    owner_id: ObjectId = Field(..., description="References user._id")
    is_public: bool = True
    cover_image: Optional[str] = None


class Shares(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    twitter: int = 0
    facebook: int = 0
    linkedin: int = 0
    copy_link: int = Field(0, alias="copyLink")


class Article(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    collection_id: ObjectId = Field(..., description="References blogcollection._id")
    title: str = Field(..., min_length=3, max_length=100)
    slug: Optional[str] = Field(None, description="Unique within the collection")
    content: str = Field(..., min_length=10)
    share_count: int = 0
    shares: Shares = Field(default_factory=Shares)


class CurrentUser(BaseModel):
    """Identity the auth gate attaches to a request."""
    id: str
    username: str
    name: str = ""
    email: str = ""

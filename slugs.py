"""
Slug and subdomain assignment.

Collection and article slugs are a readable prefix plus a four digit
suffix. Uniqueness is enforced by the store's unique indexes; the insert and
update helpers here pick a fresh suffix and retry when the store reports a
clash on the slug itself. Subdomains carry no suffix and are never retried:
a clash there is reported to the caller as a conflict.
"""
import logging
import random
import re
from typing import Optional

from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError

from errors import Conflict, ValidationFailed

logger = logging.getLogger(__name__)

SUBDOMAIN_MIN = 3
SUBDOMAIN_MAX = 30
MAX_SLUG_ATTEMPTS = 5

_SUBDOMAIN_RE = re.compile(r"^[a-z0-9-]+$")


def slugify(text: str) -> str:
    slug = (text or "").strip().lower()
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-")


def slug_suffix() -> str:
    return f"{random.randint(0, 9999):04d}"


def suffixed_slug(text: str, fallback: str = "untitled") -> str:
    return f"{slugify(text) or fallback}-{slug_suffix()}"


def subdomain_problem(value: str) -> Optional[str]:
    """Return why *value* is not a usable subdomain, or None if it is."""
    if not _SUBDOMAIN_RE.match(value or ""):
        return "Subdomain can only contain lowercase letters, numbers, and hyphens"
    if len(value) < SUBDOMAIN_MIN:
        return f"Subdomain must be at least {SUBDOMAIN_MIN} characters"
    if len(value) > SUBDOMAIN_MAX:
        return f"Subdomain must be at most {SUBDOMAIN_MAX} characters"
    return None


def derive_subdomain(name: str) -> str:
    subdomain = slugify(name)[:SUBDOMAIN_MAX].strip("-")
    problem = subdomain_problem(subdomain)
    if problem:
        raise ValidationFailed(
            "Invalid subdomain",
            f"Could not derive a subdomain from the name ({problem}); please provide one",
        )
    return subdomain


def _slug_taken(collection: Collection, slug: str, scope: dict, exclude_id=None) -> bool:
    query = {**scope, "slug": slug}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return collection.find_one(query, {"_id": 1}) is not None


def insert_with_unique_slug(
    collection: Collection,
    document: dict,
    text: str,
    fallback: str = "untitled",
    scope: Optional[dict] = None,
):
    """Insert *document* with a slug derived from *text*; return the new _id.

    A DuplicateKeyError that is not caused by the slug (e.g. a subdomain
    clash) is re-raised for the caller to map.
    """
    scope = scope or {}
    for _ in range(MAX_SLUG_ATTEMPTS):
        document["slug"] = suffixed_slug(text, fallback)
        try:
            return collection.insert_one(document).inserted_id
        except DuplicateKeyError:
            if not _slug_taken(collection, document["slug"], scope):
                raise
            logger.info("Slug %s already taken, picking another", document["slug"])
            document.pop("_id", None)
    raise Conflict("Duplicate slug", f"Could not assign a unique slug for '{text}'")


def update_with_unique_slug(
    collection: Collection,
    doc_id,
    changes: dict,
    text: str,
    fallback: str = "untitled",
    scope: Optional[dict] = None,
    current_slug: Optional[str] = None,
) -> str:
    """Apply *changes* plus a slug freshly derived from *text*; return the slug.

    The new slug always differs from *current_slug*.
    """
    scope = scope or {}
    for _ in range(MAX_SLUG_ATTEMPTS):
        slug = suffixed_slug(text, fallback)
        if slug == current_slug:
            continue
        try:
            collection.update_one({"_id": doc_id}, {"$set": {**changes, "slug": slug}})
            return slug
        except DuplicateKeyError:
            if not _slug_taken(collection, slug, scope, exclude_id=doc_id):
                raise
            logger.info("Slug %s already taken, picking another", slug)
    raise Conflict("Duplicate slug", f"Could not assign a unique slug for '{text}'")

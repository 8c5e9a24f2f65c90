"""
tests/test_slugs.py
"""
from __future__ import annotations

import itertools
import re

import mongomock
import pytest
from pymongo.errors import DuplicateKeyError

import slugs
from errors import Conflict, ValidationFailed


def _fixed_suffixes(monkeypatch, *values):
    seq = itertools.chain(values, itertools.repeat(values[-1]))
    monkeypatch.setattr(slugs, "slug_suffix", lambda: next(seq))


@pytest.fixture
def posts():
    coll = mongomock.MongoClient()["slugs_test"]["post"]
    coll.create_index("slug", unique=True)
    return coll


# ───────────────────────── slugify ────────────────────────────────────
@pytest.mark.parametrize(
    "text, expected",
    [
        ("Tech Notes", "tech-notes"),
        ("Tech Notes!!", "tech-notes"),
        ("  Hello,   World  ", "hello-world"),
        ("snake_case_title", "snake-case-title"),
        ("Ünïcode café", "ncode-caf"),
        ("a -- b", "a-b"),
        ("!!!", ""),
        ("", ""),
    ],
)
def test_slugify(text, expected):
    assert slugs.slugify(text) == expected


def test_suffixed_slug_has_four_digits():
    assert re.fullmatch(r"my-post-\d{4}", slugs.suffixed_slug("My Post"))


def test_suffixed_slug_falls_back_when_nothing_is_left():
    assert re.fullmatch(r"untitled-\d{4}", slugs.suffixed_slug("???"))
    assert re.fullmatch(r"blog-\d{4}", slugs.suffixed_slug("???", fallback="blog"))


# ───────────────────────── subdomains ─────────────────────────────────
def test_derive_subdomain_has_no_suffix():
    assert slugs.derive_subdomain("Tech Notes") == "tech-notes"


def test_derive_subdomain_truncates_to_limit():
    name = "The Quite Long Name Of A Very Serious Blog"
    sub = slugs.derive_subdomain(name)
    assert len(sub) <= slugs.SUBDOMAIN_MAX
    assert not sub.endswith("-")
    assert sub == "the-quite-long-name-of-a-very"


def test_derive_subdomain_rejects_too_short():
    with pytest.raises(ValidationFailed):
        slugs.derive_subdomain("A!")


@pytest.mark.parametrize(
    "value, ok",
    [("abc", True), ("a" * 30, True), ("ab", False), ("a" * 31, False),
     ("my-blog-2", True), ("My-Blog", False), ("my_blog", False), ("", False)],
)
def test_subdomain_problem(value, ok):
    assert (slugs.subdomain_problem(value) is None) is ok


# ───────────────────────── unique insert/update ───────────────────────
def test_insert_retries_on_slug_clash(posts, monkeypatch):
    _fixed_suffixes(monkeypatch, "0001", "0001", "0002")
    slugs.insert_with_unique_slug(posts, {"title": "Hello"}, "Hello")
    slugs.insert_with_unique_slug(posts, {"title": "Hello"}, "Hello")

    assert sorted(p["slug"] for p in posts.find()) == ["hello-0001", "hello-0002"]


def test_insert_gives_up_with_conflict(posts, monkeypatch):
    _fixed_suffixes(monkeypatch, "0001")
    slugs.insert_with_unique_slug(posts, {"title": "Hello"}, "Hello")
    with pytest.raises(Conflict):
        slugs.insert_with_unique_slug(posts, {"title": "Hello"}, "Hello")
    assert posts.count_documents({}) == 1


def test_insert_reraises_other_duplicates(posts, monkeypatch):
    posts.create_index("subdomain", unique=True)
    _fixed_suffixes(monkeypatch, "0001", "0002")
    slugs.insert_with_unique_slug(posts, {"subdomain": "taken"}, "One")
    with pytest.raises(DuplicateKeyError):
        slugs.insert_with_unique_slug(posts, {"subdomain": "taken"}, "Two")


def test_scope_limits_the_clash_check(monkeypatch):
    articles = mongomock.MongoClient()["slugs_test"]["article"]
    articles.create_index([("collection_id", 1), ("slug", 1)], unique=True)
    _fixed_suffixes(monkeypatch, "0001")

    slugs.insert_with_unique_slug(articles, {"collection_id": 1}, "Hello", scope={"collection_id": 1})
    slugs.insert_with_unique_slug(articles, {"collection_id": 2}, "Hello", scope={"collection_id": 2})

    assert articles.count_documents({"slug": "hello-0001"}) == 2


def test_update_never_reuses_current_slug(posts, monkeypatch):
    _fixed_suffixes(monkeypatch, "0001", "0001", "0002")
    doc_id = slugs.insert_with_unique_slug(posts, {"title": "Hello"}, "Hello")

    slug = slugs.update_with_unique_slug(
        posts, doc_id, {"title": "hello"}, "hello", current_slug="hello-0001"
    )

    assert slug == "hello-0002"
    assert posts.find_one({"_id": doc_id})["slug"] == "hello-0002"

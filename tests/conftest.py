"""Shared fixtures: a small blog catalog."""

from __future__ import annotations

import pytest

from pgcompose import Catalog, EngineSettings, JoinComposer, QueryEngine

SNAPSHOT = [
    {
        "schema": "public",
        "name": "users",
        "columns": ["id", "name", "age", "tags", "profile", "created_at"],
        "primaryKey": ["id"],
    },
    {
        "schema": "public",
        "name": "posts",
        "columns": ["id", "user_id", "title"],
        "primaryKey": ["id"],
        "foreignKeys": [
            {
                "name": "posts_user_id_fkey",
                "originSchema": "public",
                "originName": "users",
                "originColumns": ["id"],
                "dependentColumns": ["user_id"],
            }
        ],
    },
    {
        "schema": "public",
        "name": "comments",
        "columns": ["id", "post_id", "body"],
        "primaryKey": ["id"],
        "foreignKeys": [
            {
                "name": "comments_post_id_fkey",
                "originName": "posts",
                "originColumns": ["id"],
                "dependentColumns": ["post_id"],
            }
        ],
    },
    {
        "schema": "public",
        "name": "messages",
        "columns": ["id", "sender_id", "recipient_id", "text"],
        "primaryKey": ["id"],
        "foreignKeys": [
            {
                "name": "messages_sender_id_fkey",
                "originName": "users",
                "originColumns": ["id"],
                "dependentColumns": ["sender_id"],
            },
            {
                "name": "messages_recipient_id_fkey",
                "originName": "users",
                "originColumns": ["id"],
                "dependentColumns": ["recipient_id"],
            },
        ],
    },
    {
        "schema": "public",
        "name": "docs",
        "columns": ["id", "body", "search", "created_at"],
        "primaryKey": ["id"],
    },
    {
        "schema": "audit",
        "name": "events",
        "columns": ["id", "user_id", "kind"],
        "primaryKey": ["id"],
    },
    {
        "schema": "public",
        "name": "memberships",
        "columns": ["user_id", "group_id", "role"],
        "primaryKey": ["user_id", "group_id"],
    },
    {
        "schema": "public",
        "name": "user_summary",
        "columns": ["id", "name", "post_count"],
        "isView": True,
    },
]


@pytest.fixture
def catalog() -> Catalog:
    return Catalog.from_snapshot(SNAPSHOT)


@pytest.fixture
def users(catalog):
    return catalog.get("users")


@pytest.fixture
def posts(catalog):
    return catalog.get("posts")


@pytest.fixture
def docs(catalog):
    return catalog.get("docs")


@pytest.fixture
def composer(catalog) -> JoinComposer:
    return JoinComposer(catalog, EngineSettings())


@pytest.fixture
def users_posts(composer, users):
    """``users`` joined to ``posts`` on the foreign key."""
    return composer.join(users, "posts")


@pytest.fixture
def engine(catalog) -> QueryEngine:
    return QueryEngine(catalog)

"""Tests for folding joined rows into object trees."""

from __future__ import annotations

import pytest

from pgcompose import (
    DecompositionError,
    DecompositionSchema,
    decompose,
    merge_documents,
)


@pytest.fixture
def schema() -> DecompositionSchema:
    return DecompositionSchema.from_dict(
        {
            "pk": "user_id",
            "columns": {"user_id": "id", "user_name": "name"},
            "posts": {
                "pk": "post_id",
                "columns": {"post_id": "id", "post_title": "title"},
            },
        }
    )


def test_rows_fold_into_trees(schema):
    rows = [
        {"user_id": 1, "user_name": "Ann", "post_id": 10, "post_title": "a"},
        {"user_id": 1, "user_name": "Ann", "post_id": 11, "post_title": "b"},
        {"user_id": 2, "user_name": "Bob", "post_id": None, "post_title": None},
    ]
    assert decompose(schema, rows) == [
        {
            "id": 1,
            "name": "Ann",
            "posts": [{"id": 10, "title": "a"}, {"id": 11, "title": "b"}],
        },
        {"id": 2, "name": "Bob", "posts": []},
    ]


def test_duplicates_are_merged_in_first_seen_order(schema):
    rows = [
        {"user_id": 2, "user_name": "Bob", "post_id": 20, "post_title": "x"},
        {"user_id": 1, "user_name": "Ann", "post_id": 10, "post_title": "a"},
        {"user_id": 2, "user_name": "Bob", "post_id": 20, "post_title": "x"},
    ]
    result = decompose(schema, rows)
    assert [u["id"] for u in result] == [2, 1]
    assert result[0]["posts"] == [{"id": 20, "title": "x"}]


def test_object_and_dictionary_modes():
    schema = DecompositionSchema.from_dict(
        {
            "pk": ["id"],
            "columns": ["id"],
            "profile": {
                "pk": "profile_id",
                "columns": {"profile_id": "id"},
                "decomposeTo": "object",
            },
            "tags": {
                "pk": "tag_id",
                "columns": {"tag_id": "id", "tag": "label"},
                "decomposeTo": "dictionary",
            },
        }
    )
    rows = [
        {"id": 1, "profile_id": 5, "tag_id": 7, "tag": "red"},
        {"id": 1, "profile_id": 5, "tag_id": 8, "tag": "blue"},
        {"id": 2, "profile_id": None, "tag_id": None, "tag": None},
    ]
    assert decompose(schema, rows) == [
        {
            "id": 1,
            "profile": {"id": 5},
            "tags": {7: {"id": 7, "label": "red"}, 8: {"id": 8, "label": "blue"}},
        },
        {"id": 2, "profile": None, "tags": {}},
    ]


def test_composite_keys():
    schema = DecompositionSchema(
        pk=("user_id", "group_id"), columns={"user_id": "user", "group_id": "group"}
    )
    rows = [
        {"user_id": 1, "group_id": 1},
        {"user_id": 1, "group_id": 2},
        {"user_id": 1, "group_id": 1},
    ]
    assert decompose(schema, rows) == [
        {"user": 1, "group": 1},
        {"user": 1, "group": 2},
    ]


def test_nested_children():
    schema = DecompositionSchema.from_dict(
        {
            "pk": "u",
            "columns": {"u": "id"},
            "posts": {
                "pk": "p",
                "columns": {"p": "id"},
                "comments": {"pk": "c", "columns": {"c": "id"}},
            },
        }
    )
    rows = [
        {"u": 1, "p": 1, "c": 1},
        {"u": 1, "p": 1, "c": 2},
        {"u": 1, "p": 2, "c": None},
    ]
    assert decompose(schema, rows) == [
        {
            "id": 1,
            "posts": [
                {"id": 1, "comments": [{"id": 1}, {"id": 2}]},
                {"id": 2, "comments": []},
            ],
        }
    ]


def test_null_root_key_is_an_error(schema):
    rows = [
        {"user_id": 1, "user_name": "Ann", "post_id": None, "post_title": None},
        {"user_id": None, "user_name": None, "post_id": None, "post_title": None},
    ]
    with pytest.raises(DecompositionError) as exc_info:
        decompose(schema, rows)
    assert exc_info.value.row_index == 1


def test_no_rows():
    schema = DecompositionSchema(pk=("id",), columns={"id": "id"})
    assert decompose(schema, []) == []


def test_joined_rows_from_a_compound_relation(users_posts):
    rows = [
        {"users__id": 1, "users__name": "Ann", "posts__id": 3, "posts__title": "t"},
    ]
    (user,) = decompose(users_posts.decomposition, rows)
    assert user["id"] == 1
    assert user["name"] == "Ann"
    assert user["age"] is None
    assert user["posts"] == [{"id": 3, "user_id": None, "title": "t"}]


# -- schema parsing ----------------------------------------------------------


@pytest.mark.parametrize(
    "data",
    [
        {"columns": ["id"]},
        {"pk": [], "columns": ["id"]},
        {"pk": "id", "decomposeTo": "set"},
        {"pk": "id", "child": ["not", "a", "mapping"]},
        ["pk"],
    ],
)
def test_malformed_schema(data):
    with pytest.raises(DecompositionError):
        DecompositionSchema.from_dict(data)


def test_to_dict_round_trips(schema):
    assert DecompositionSchema.from_dict(schema.to_dict()) == schema


def test_schema_is_read_only(schema):
    with pytest.raises(TypeError):
        schema.columns["x"] = "y"  # type: ignore[index]


# -- documents ---------------------------------------------------------------


def test_merge_documents():
    rows = [
        {
            "id": 4,
            "body": {"title": "Hello", "id": "ignored"},
            "search": "'hello'",
            "created_at": "2024-01-01",
        },
        {"id": 5, "body": None},
    ]
    assert merge_documents(rows) == [
        {"title": "Hello", "id": 4, "created_at": "2024-01-01"},
        {"id": 5},
    ]

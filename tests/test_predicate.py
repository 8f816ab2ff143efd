"""Tests for criteria compilation."""

from __future__ import annotations

import datetime
import re

import pytest

from pgcompose import (
    CompileError,
    KeyResolutionError,
    RawPredicate,
    SchemaError,
    build_tree,
    compile_predicate,
)
from pgcompose.predicate import And, Leaf, Or, expand_pk_value, is_pk_search

_PLACEHOLDER_RE = re.compile(r"\$(\d+)")


def _ordinals(text: str) -> list[int]:
    return [int(n) for n in _PLACEHOLDER_RE.findall(text)]


# -- tree building -----------------------------------------------------------


def test_build_tree_leaves_in_key_order():
    tree = build_tree({"name": "Alice", "age >=": 21})
    assert tree == And((Leaf("name", "Alice"), Leaf("age >=", 21)))


def test_build_tree_expands_operator_maps():
    tree = build_tree({"age": {">=": 21, "<": 65}})
    assert tree.children == (Leaf("age", 21, ">="), Leaf("age", 65, "<"))


def test_build_tree_groups():
    tree = build_tree({"or": [{"a": 1}, {"b": 2}], "and": [{"c": 3}]})
    first, second = tree.children
    assert isinstance(first, Or)
    assert len(first.children) == 2
    assert isinstance(second, And)
    assert second.grouped is True


@pytest.mark.parametrize(
    "criteria",
    [
        {"or": {"a": 1}},
        {"or": []},
        {"and": ["name"]},
        {"or": [{"a": 1}, None]},
    ],
)
def test_build_tree_rejects_malformed_groups(criteria):
    with pytest.raises(CompileError):
        build_tree(criteria)


# -- basic compilation -------------------------------------------------------


def test_empty_criteria_is_true(users):
    assert compile_predicate(users, None).text == "TRUE"
    assert compile_predicate(users, {}).text == "TRUE"
    assert compile_predicate(users, {}).params == ()


def test_equality_and_comparison(users):
    compiled = compile_predicate(users, {"name": "Alice", "age >=": 21})
    assert compiled.text == '"name" = $1 AND "age" >= $2'
    assert compiled.params == ("Alice", 21)


def test_offset_shifts_placeholders(users):
    compiled = compile_predicate(users, {"name": "Alice", "age >=": 21}, 3)
    assert compiled.text == '"name" = $4 AND "age" >= $5'


def test_operator_map(users):
    compiled = compile_predicate(users, {"age": {">=": 21, "<": 65}})
    assert compiled.text == '"age" >= $1 AND "age" < $2'
    assert compiled.params == (21, 65)


def test_operator_map_is_case_insensitive(users):
    compiled = compile_predicate(users, {"name": {"ILIKE": "a%"}})
    assert compiled.text == '"name" ILIKE $1'


def test_operator_map_conflicts_with_remainder(users):
    with pytest.raises(CompileError):
        compile_predicate(users, {"age >": {">=": 1}})


def test_null_and_boolean_bind_nothing(users):
    compiled = compile_predicate(users, {"name": None, "age is not": None})
    assert compiled.text == '"name" IS NULL AND "age" IS NOT NULL'
    assert compiled.params == ()


def test_in_list_and_empty_list(users):
    compiled = compile_predicate(users, {"id": [1, 2], "name": []})
    assert compiled.text == "\"id\" IN ($1,$2) AND \"name\" = ANY('{}')"
    assert compiled.params == (1, 2)


def test_between_timestamps(users):
    start = datetime.datetime(2024, 1, 1)
    end = datetime.datetime(2024, 6, 30)
    compiled = compile_predicate(users, {"created_at between": [start, end]})
    assert compiled.text == (
        '"created_at" BETWEEN $1::timestamptz AND $2::timestamptz'
    )
    assert compiled.params == (start, end)


def test_array_contains_uses_one_literal(users):
    compiled = compile_predicate(users, {"tags @>": ["a", "b c"]})
    assert compiled.text == '"tags" @> $1'
    assert compiled.params == ('{a,"b c"}',)


@pytest.mark.parametrize(
    "criteria",
    [{"tags &&": "a"}, {"tags": {"&&": 5}}, {"profile.address ?|": "city"}],
)
def test_array_operators_reject_scalars(users, criteria):
    with pytest.raises(CompileError):
        compile_predicate(users, criteria)


def test_unresolvable_key_raises(users):
    with pytest.raises(KeyResolutionError):
        compile_predicate(users, {"profile.": 1})


# -- logical groups ----------------------------------------------------------


def test_or_group_numbers_left_to_right(users):
    compiled = compile_predicate(
        users,
        {"or": [{"name": "a"}, {"age >": 1, "age <": 9}], "id": 5},
    )
    assert compiled.text == (
        '(("name" = $1) OR ("age" > $2 AND "age" < $3)) AND "id" = $4'
    )
    assert compiled.params == ("a", 1, 9, 5)


def test_and_group_nests_or(users):
    compiled = compile_predicate(
        users,
        {"and": [{"name": "a"}, {"or": [{"age": 1}, {"age": 2}]}]},
    )
    assert compiled.text == (
        '(("name" = $1) AND ((("age" = $2) OR ("age" = $3))))'
    )


def test_placeholders_are_contiguous(users):
    criteria = {
        "name": ["a", "b"],
        "or": [{"age between": [1, 5]}, {"tags @>": ["x"]}],
        "created_at >": datetime.datetime(2024, 1, 1),
        "and": [{"id": []}, {"name ilike": "z%"}],
    }
    compiled = compile_predicate(users, criteria, 2)
    assert _ordinals(compiled.text) == list(range(3, 3 + len(compiled.params)))


def test_compilation_is_repeatable(users):
    criteria = {"or": [{"name": "a"}, {"tags[0]": "x"}], "age >": 3}
    assert compile_predicate(users, criteria) == compile_predicate(users, criteria)


# -- JSON paths --------------------------------------------------------------


def test_json_path_values_are_stringified(users):
    compiled = compile_predicate(users, {"profile.age": 30, "profile.vip": True})
    assert compiled.text == (
        "\"profile\"->>'age' = $1 AND \"profile\"->>'vip' = $2"
    )
    assert compiled.params == ("30", "true")


def test_json_path_in_list_is_stringified(users):
    compiled = compile_predicate(users, {"profile.age": [1, 2]})
    assert compiled.text == "\"profile\"->>'age' IN ($1,$2)"
    assert compiled.params == ("1", "2")


def test_json_path_containment_keeps_jsonb(users):
    compiled = compile_predicate(users, {"profile.address @>": {"city": "Oslo"}})
    assert compiled.text == "\"profile\"->'address' @> $1"
    assert compiled.params == ('{"city": "Oslo"}',)


def test_json_path_existence_keeps_jsonb(users):
    compiled = compile_predicate(users, {"profile.address ?": "city"})
    assert compiled.text == "\"profile\"->'address' ? $1"
    assert compiled.params == ("city",)


def test_cast_json_path(users):
    compiled = compile_predicate(users, {"profile.age::int >": 30})
    assert compiled.text == "(\"profile\"->>'age')::int > $1"
    assert compiled.params == ("30",)


# -- document mode -----------------------------------------------------------


def test_document_equality_is_containment(docs):
    compiled = compile_predicate(docs, {"author.name": "Ann"}, document=True)
    assert compiled.text == '"body" @> $1'
    assert compiled.params == ('{"author": {"name": "Ann"}}',)


def test_document_comparison_casts_by_value(docs):
    compiled = compile_predicate(
        docs,
        {"price >": 10, "active": [True], "seen <": datetime.datetime(2024, 1, 1)},
        document=True,
    )
    assert compiled.text == (
        "(\"body\"->>'price')::decimal > $1 AND "
        "(\"body\"->>'active')::boolean IN ($2) AND "
        "(\"body\"->>'seen')::timestamptz < $3"
    )


def test_document_array_index_is_not_containment(docs):
    compiled = compile_predicate(docs, {"tags[0]": "a"}, document=True)
    assert compiled.text == "\"body\"#>>'{tags,0}' = $1"


def test_document_null_uses_is(docs):
    compiled = compile_predicate(docs, {"title": None}, document=True)
    assert compiled.text == "\"body\"->>'title' IS NULL"


# -- compound relations ------------------------------------------------------


def test_compound_keys_are_qualified(users_posts):
    compiled = compile_predicate(
        users_posts, {"posts.title ilike": "%x%", "name": "a"}
    )
    assert compiled.text == '"posts"."title" ILIKE $1 AND "users"."name" = $2'


# -- raw predicates ----------------------------------------------------------


def test_raw_predicate_verbatim(users):
    compiled = compile_predicate(users, RawPredicate("age > $1", (21,)))
    assert compiled.text == "age > $1"
    assert compiled.params == (21,)


def test_raw_predicate_with_where_follows_raw_params(users):
    raw = RawPredicate("age > $1", (21,), where={"name ilike": "a%"})
    compiled = compile_predicate(users, raw)
    assert compiled.text == 'age > $1 AND "name" ILIKE $2'
    assert compiled.params == (21, "a%")


def test_raw_predicate_must_come_first(users):
    with pytest.raises(CompileError):
        compile_predicate(users, RawPredicate("age > $1", (21,)), 1)


# -- primary keys ------------------------------------------------------------


def test_is_pk_search(users, catalog):
    assert is_pk_search(users, {"id": 1}) is True
    assert is_pk_search(users, {"id": 1, "name": "a"}) is False
    assert is_pk_search(users, 1) is False
    memberships = catalog.get("memberships")
    assert is_pk_search(memberships, {"group_id": 2, "user_id": 1}) is True


def test_is_pk_search_without_pk(catalog):
    assert is_pk_search(catalog.get("user_summary"), {"id": 1}) is False


def test_expand_pk_value(users):
    assert expand_pk_value(users, 42) == {"id": 42}
    assert expand_pk_value(users, "42") == {"id": "42"}


def test_expand_pk_value_rejects_natural_keys(users):
    with pytest.raises(CompileError):
        expand_pk_value(users, "alice")


def test_expand_pk_value_requires_single_column_pk(catalog):
    with pytest.raises(SchemaError):
        expand_pk_value(catalog.get("memberships"), 5)

"""Tests for SELECT statements."""

from __future__ import annotations

import datetime
import logging

import pytest

from pgcompose import (
    CompileError,
    ConfigurationError,
    DecompositionSchema,
    RawPredicate,
    Select,
)


def _sql(source, criteria=None, options=None):
    return Select(source, criteria, options).compile()


# -- basics ------------------------------------------------------------------


def test_select_with_criteria(users):
    stmt = _sql(users, {"name": "Alice", "age >=": 21})
    assert stmt.sql == 'SELECT * FROM "users" WHERE "name" = $1 AND "age" >= $2'
    assert stmt.params == ("Alice", 21)
    assert stmt.single is False


def test_select_everything(users):
    assert _sql(users).sql == 'SELECT * FROM "users" WHERE TRUE'


def test_select_other_schema(catalog):
    events = catalog.get("events", schema="audit")
    assert _sql(events).sql == 'SELECT * FROM "audit"."events" WHERE TRUE'


def test_only_and_distinct(users):
    stmt = _sql(users, None, {"only": True, "distinct": True, "fields": ["name"]})
    assert stmt.sql == 'SELECT DISTINCT "name" FROM ONLY "users" WHERE TRUE'


def test_primary_key_value_implies_single(users):
    stmt = _sql(users, 7)
    assert stmt.sql == 'SELECT * FROM "users" WHERE "id" = $1 LIMIT 1'
    assert stmt.params == (7,)
    assert stmt.single is True


def test_natural_key_value_is_rejected(users):
    with pytest.raises(CompileError):
        _sql(users, "alice")


# -- projection --------------------------------------------------------------


def test_fields_and_exprs(users):
    stmt = _sql(
        users,
        options={"fields": ["id", "profile.city"], "exprs": {"n": "age + 1"}},
    )
    assert stmt.sql == (
        "SELECT \"id\",\"profile\"->>'city',age + 1 AS \"n\" FROM \"users\" WHERE TRUE"
    )


def test_fields_alias_mapping_with_wildcard(users):
    stmt = _sql(users, options={"fields": {"who": "name", "*": True}})
    select_list = stmt.sql.split(" FROM ")[0]
    assert select_list.startswith('SELECT "name" AS "who","id","age"')
    assert '"name",' not in select_list


def test_list_exprs_are_verbatim(users):
    stmt = _sql(users, options={"exprs": ["count(*) AS total"]})
    assert stmt.sql == 'SELECT count(*) AS total FROM "users" WHERE TRUE'


def test_empty_projection_is_rejected(users):
    with pytest.raises(ConfigurationError):
        _sql(users, options={"fields": []})


def test_document_projection(docs):
    stmt = _sql(docs, options={"fields": ["title"], "document": True})
    assert stmt.sql.startswith("SELECT \"id\",\"body\"->>'title' AS \"title\" FROM")
    assert stmt.document is True


def test_compound_default_projection(users_posts):
    stmt = Select(users_posts).compile()
    assert stmt.sql.startswith(
        'SELECT "users"."id" AS "users__id","users"."name" AS "users__name"'
    )
    assert '"posts"."title" AS "posts__title"' in stmt.sql
    assert 'FROM "users" INNER JOIN "posts" ON ("posts"."user_id" = "users"."id")' in (
        stmt.sql
    )


# -- ordering ----------------------------------------------------------------


def test_order_entries(users):
    stmt = _sql(
        users,
        options={
            "order": [
                "name",
                {"field": "age", "direction": "DESC", "nulls": "last"},
                {"expr": "length(name)"},
                {"field": "profile.rank", "type": "int"},
            ]
        },
    )
    assert stmt.sql.endswith(
        "ORDER BY \"name\" ASC,\"age\" DESC NULLS LAST,length(name) ASC,"
        "(\"profile\"->>'rank')::int ASC"
    )


def test_order_on_document_body(docs):
    stmt = _sql(
        docs,
        options={"order": [{"field": "rank", "type": "int"}], "orderBody": True},
    )
    assert stmt.sql.endswith("ORDER BY (\"body\"->>'rank')::int ASC")


def test_order_entry_needs_field_or_expr(users):
    with pytest.raises(ConfigurationError):
        _sql(users, options={"order": [{"direction": "asc"}]})


def test_order_type_is_validated(users):
    with pytest.raises(ConfigurationError):
        _sql(users, options={"order": [{"field": "age", "type": "int; drop"}]})


# -- paging ------------------------------------------------------------------


def test_offset_and_limit(users):
    stmt = _sql(users, options={"offset": 20, "limit": 10})
    assert stmt.sql == 'SELECT * FROM "users" WHERE TRUE OFFSET 20 LIMIT 10'


def test_zero_offset_is_omitted(users):
    assert _sql(users, options={"offset": 0}).sql == 'SELECT * FROM "users" WHERE TRUE'


def test_keyset_first_page(users):
    stmt = _sql(
        users,
        options={
            "order": [{"field": "created_at", "direction": "desc"}],
            "pageLength": 25,
        },
    )
    assert stmt.sql == (
        'SELECT * FROM "users" WHERE TRUE ORDER BY "created_at" DESC '
        "FETCH FIRST 25 ROWS ONLY"
    )


def test_keyset_next_page(users):
    last = datetime.datetime(2024, 3, 1)
    stmt = _sql(
        users,
        {"age >": 18},
        {
            "order": [{"field": "created_at", "direction": "desc", "last": last}],
            "page_length": 25,
        },
    )
    assert stmt.sql == (
        'SELECT * FROM "users" WHERE "age" > $1 AND ("created_at") < ($2) '
        'ORDER BY "created_at" DESC FETCH FIRST 25 ROWS ONLY'
    )
    assert stmt.params == (18, last)


def test_keyset_with_several_columns(users):
    stmt = _sql(
        users,
        options={
            "order": [{"field": "age", "last": 30}, {"field": "id", "last": 9}],
            "pageLength": 5,
        },
    )
    assert '("age","id") > ($1,$2)' in stmt.sql
    assert stmt.params == (30, 9)


def test_keyset_requires_order(users):
    with pytest.raises(ConfigurationError):
        _sql(users, options={"pageLength": 10})


@pytest.mark.parametrize("extra", [{"offset": 10}, {"limit": 10}, {"offset": 0}])
def test_keyset_rejects_offset_and_limit(users, extra):
    with pytest.raises(ConfigurationError):
        _sql(users, options={"order": ["id"], "pageLength": 10, **extra})


def test_keyset_needs_last_on_every_order_entry(users):
    order = [
        {"field": "created_at", "direction": "desc", "last": "T"},
        {"field": "id"},
    ]
    with pytest.raises(ConfigurationError) as exc_info:
        _sql(users, options={"order": order, "pageLength": 10})
    assert exc_info.value.option == "order"


def test_keyset_rejects_single(users):
    with pytest.raises(ConfigurationError) as exc_info:
        _sql(users, options={"order": ["id"], "pageLength": 10, "single": True})
    assert exc_info.value.option == "single"


def test_primary_key_value_overrides_page_length(users):
    stmt = _sql(users, 3, {"order": ["id"], "pageLength": 10})
    assert stmt.sql == (
        'SELECT * FROM "users" WHERE "id" = $1 ORDER BY "id" ASC LIMIT 1'
    )


# -- locking -----------------------------------------------------------------


def test_lock_clause(users):
    lock = {"strength": "no key update", "lockedRows": "skip locked"}
    stmt = _sql(users, {"id": 1}, {"lock": lock})
    assert stmt.sql.endswith("FOR NO KEY UPDATE SKIP LOCKED")


def test_lock_comes_before_limit(users):
    stmt = _sql(users, None, {"lock": {"strength": "share"}, "limit": 1})
    assert stmt.sql.endswith("FOR SHARE LIMIT 1")


def test_legacy_lock_flags_warn(users, caplog):
    with caplog.at_level(logging.WARNING, logger="pgcompose.options"):
        stmt = _sql(users, None, {"forUpdate": True})
    assert stmt.sql.endswith("FOR UPDATE")
    assert "deprecated" in caplog.text


def test_lock_options_are_exclusive(users):
    with pytest.raises(ConfigurationError):
        _sql(users, None, {"forUpdate": True, "lock": {"strength": "share"}})


def test_unknown_lock_strength(users):
    with pytest.raises(ConfigurationError):
        _sql(users, None, {"lock": {"strength": "exclusive"}})


# -- raw predicates and decomposition ----------------------------------------


def test_raw_predicate(users):
    stmt = _sql(users, RawPredicate("age > $1 OR name = $2", (1, "x")), {"limit": 2})
    assert stmt.sql == 'SELECT * FROM "users" WHERE age > $1 OR name = $2 LIMIT 2'
    assert stmt.params == (1, "x")


def test_decompose_option_overrides(users_posts):
    stmt = Select(
        users_posts,
        options={"decompose": {"pk": "users__id", "columns": ["users__id"]}},
    ).compile()
    assert stmt.decomposition == DecompositionSchema(
        pk=("users__id",), columns={"users__id": "users__id"}
    )


def test_unknown_option(users):
    with pytest.raises(ConfigurationError) as exc_info:
        _sql(users, None, {"colour": "blue"})
    assert exc_info.value.option == "colour"

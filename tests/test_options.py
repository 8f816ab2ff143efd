"""Tests for option parsing."""

from __future__ import annotations

import pytest

from pgcompose import (
    ConfigurationError,
    EngineSettings,
    InsertOptions,
    LockSpec,
    OrderSpec,
    SelectOptions,
    parse_options,
)


def test_none_gives_defaults():
    opts = parse_options(SelectOptions, None)
    assert opts == SelectOptions()
    assert opts.limit is None
    assert opts.order is None


def test_model_instances_pass_through():
    opts = SelectOptions(limit=3)
    assert parse_options(SelectOptions, opts) is opts


def test_camel_and_snake_case_keys():
    camel = parse_options(SelectOptions, {"pageLength": 5, "orderBody": True})
    snake = parse_options(SelectOptions, {"page_length": 5, "order_body": True})
    assert camel == snake


def test_order_shorthands():
    opts = parse_options(SelectOptions, {"order": "name"})
    assert opts.order == (OrderSpec(field="name"),)
    opts = parse_options(SelectOptions, {"order": {"expr": "random()"}})
    assert opts.order == (OrderSpec(expr="random()"),)


def test_order_last_presence_is_tracked():
    with_none = OrderSpec.model_validate({"field": "a", "last": None})
    without = OrderSpec(field="a")
    assert with_none.has_last is True
    assert without.has_last is False


@pytest.mark.parametrize(
    ("options", "option"),
    [
        ({"limit": -1}, "limit"),
        ({"pageLength": 0}, "pageLength"),
        ({"order": [{"field": "a", "direction": "up"}]}, "order.0.direction"),
        ({"bogus": 1}, "bogus"),
    ],
)
def test_invalid_options_name_the_option(options, option):
    with pytest.raises(ConfigurationError) as exc_info:
        parse_options(SelectOptions, options)
    assert exc_info.value.option == option
    assert exc_info.value.to_dict()["error"] == "CONFIGURATION_ERROR"


def test_options_are_frozen():
    opts = SelectOptions()
    with pytest.raises(ValueError):
        opts.limit = 4  # type: ignore[misc]


def test_lock_spec_normalises():
    lock = LockSpec(strength=" key   share ", locked_rows="nowait")
    assert lock.strength == "KEY SHARE"
    assert lock.locked_rows == "NOWAIT"


def test_insert_conflict_target_shorthand():
    opts = parse_options(InsertOptions, {"onConflictUpdate": "id"})
    assert opts.on_conflict_update == ("id",)
    conflict = {"action": "UPDATE", "target": "id"}
    opts = parse_options(InsertOptions, {"onConflict": conflict})
    assert opts.on_conflict is not None
    assert opts.on_conflict.action == "update"
    assert opts.on_conflict.target == ("id",)


def test_engine_settings():
    settings = EngineSettings(default_join_type="left  outer")
    assert settings.default_join_type == "LEFT OUTER"
    assert settings.cache_joins is True
    with pytest.raises(ValueError):
        EngineSettings(max_cached_joins=0)

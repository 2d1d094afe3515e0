"""Tests for where / set_values / on fragment helpers."""

from __future__ import annotations

import datetime as dt

import pytest

from tessera import primary, s, table
from tessera.errors import UsageError
from tessera.fragments import OPERATORS, column_name, on, set_, set_values, to_snake_case, where
from tessera.markers import UNSET
from tessera.render import render_sql


def pg(fragment):
    return render_sql(fragment, "postgresql")


class TestColumnNames:
    @pytest.mark.parametrize(
        "field, expected",
        [("createdAt", "created_at"), ("id", "id"), ("authorUserId", "author_user_id")],
    )
    def test_to_snake_case(self, field, expected):
        assert to_snake_case(field) == expected

    def test_none_casing_keeps_name(self):
        assert column_name("createdAt", "none") == "createdAt"


class TestWhere:
    def test_plain_values_are_equality(self, posts_table):
        rendered = pg(where(posts_table, {"published": True, "title": "Hello"}))
        assert rendered.sql == '"published" = $1 AND "title" = $2'
        assert rendered.params == [True, "Hello"]

    def test_casing_applied(self, posts_table):
        cutoff = dt.datetime(2024, 1, 1)
        rendered = pg(where(posts_table, {"createdAt": {"$gt": cutoff}}))
        assert rendered.sql == '"created_at" > $1'
        assert rendered.params == [cutoff]

    def test_casing_none(self):
        events = table("events", {"id": primary(s.integer()), "createdAt": s.datetime()}, casing="none")
        assert pg(where(events, {"createdAt": 1})).sql == '"createdAt" = $1'

    def test_operator_order_is_fixed(self, posts_table):
        # keys deliberately given in reverse order
        cond = {
            "$is_null": False,
            "$in": ["a", "b"],
            "$like": "%a%",
            "$lte": "z",
            "$gte": "a",
            "$gt": "0",
            "$lt": "zz",
            "$neq": "q",
            "$eq": "e",
        }
        rendered = pg(where(posts_table, {"title": cond}))
        assert rendered.sql == (
            '"title" = $1 AND "title" != $2 AND "title" < $3 AND "title" > $4 AND '
            '"title" >= $5 AND "title" <= $6 AND "title" LIKE $7 AND '
            '"title" IN ($8, $9) AND "title" IS NOT NULL'
        )
        assert rendered.params == ["e", "q", "zz", "0", "a", "z", "%a%", "a", "b"]

    def test_operator_list_matches_documented_order(self):
        assert OPERATORS == ("$eq", "$neq", "$lt", "$gt", "$gte", "$lte", "$like", "$in", "$is_null")

    @pytest.mark.parametrize("conditions", [{}, {"title": UNSET}, {"title": UNSET, "published": UNSET}])
    def test_no_conditions_always_true(self, posts_table, conditions):
        rendered = pg(where(posts_table, conditions))
        assert rendered.sql == "1 = 1"
        assert rendered.params == []

    def test_empty_in_is_always_false(self, posts_table):
        rendered = pg(where(posts_table, {"title": {"$in": []}}))
        assert rendered.sql == "1 = 0"
        assert "IN ()" not in rendered.sql
        assert rendered.params == []

    def test_in_on_sqlite(self, posts_table):
        rendered = render_sql(where(posts_table, {"title": {"$in": ("a", "b", "c")}}), "sqlite")
        assert rendered.sql == '"title" IN (?, ?, ?)'
        assert rendered.params == ["a", "b", "c"]

    def test_in_requires_sequence(self, posts_table):
        with pytest.raises(UsageError):
            where(posts_table, {"title": {"$in": "abc"}})

    def test_is_null(self, posts_table):
        assert pg(where(posts_table, {"body": {"$is_null": True}})).sql == '"body" IS NULL'

    def test_none_shorthand_is_null(self, posts_table):
        rendered = pg(where(posts_table, {"body": None}))
        assert rendered.sql == '"body" IS NULL'
        assert rendered.params == []

    def test_unset_operands_skipped(self, posts_table):
        rendered = pg(where(posts_table, {"title": {"$eq": UNSET, "$like": "a%"}}))
        assert rendered.sql == '"title" LIKE $1'

    def test_dict_without_operators_is_a_value(self, users_table):
        payload = {"a": 1}
        rendered = pg(where(users_table, {"name": payload}))
        assert rendered.params == [payload]

    def test_unknown_operator(self, posts_table):
        with pytest.raises(UsageError, match="Unknown condition operator"):
            where(posts_table, {"title": {"$between": [1, 2]}})

    def test_unknown_field(self, posts_table):
        with pytest.raises(UsageError, match="Unknown field"):
            where(posts_table, {"nope": 1})

    def test_mysql_quoting(self, posts_table):
        rendered = render_sql(where(posts_table, {"authorId": "u1"}), "mysql")
        assert rendered.sql == "`author_id` = ?"


class TestSetValues:
    def test_assignments(self, posts_table):
        rendered = pg(set_values(posts_table, {"title": "New", "createdAt": "2024-01-01"}))
        assert rendered.sql == '"title" = $1, "created_at" = $2'
        assert rendered.params == ["New", "2024-01-01"]

    def test_none_assigns_null(self, posts_table):
        rendered = pg(set_values(posts_table, {"body": None}))
        assert rendered.sql == '"body" = $1'
        assert rendered.params == [None]

    def test_unset_dropped(self, posts_table):
        rendered = pg(set_values(posts_table, {"title": "x", "body": UNSET}))
        assert rendered.sql == '"title" = $1'

    @pytest.mark.parametrize("values", [{}, {"title": UNSET}])
    def test_nothing_to_set(self, posts_table, values):
        with pytest.raises(UsageError):
            set_values(posts_table, values)

    def test_alias(self):
        assert set_ is set_values


class TestOn:
    def test_join_condition(self, posts_table):
        rendered = pg(on(posts_table, "authorId"))
        assert rendered.sql == '"users"."id" = "posts"."author_id"'
        assert rendered.params == []

    def test_not_a_reference(self, posts_table):
        with pytest.raises(UsageError, match="not a foreign key reference"):
            on(posts_table, "title")

    def test_composes_into_query(self, posts_table):
        from tessera import ident, sql

        query = sql(
            "SELECT * FROM {} JOIN {} ON {} WHERE {}",
            ident("posts"),
            ident("users"),
            on(posts_table, "authorId"),
            where(posts_table, {"published": True}),
        )
        rendered = pg(query)
        assert rendered.sql == (
            'SELECT * FROM "posts" JOIN "users" ON "users"."id" = "posts"."author_id" '
            'WHERE "published" = $1'
        )
        assert rendered.params == [True]

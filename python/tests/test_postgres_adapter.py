"""Tests for PostgresProvider SQL rendering and lifecycle (no database needed)."""

import pytest
from psycopg2.extras import Json

from datalayer.db.models import DeleteOptions, FindOptions, OrderBy, UpdateOptions
from datalayer.db.postgres_adapter import (
    PostgresProvider,
    build_where,
    render_count,
    render_delete,
    render_insert,
    render_select,
    render_update,
)
from datalayer.db.protocol import DataProvider, RealtimeProvider
from datalayer.db.query import build_descriptor, filters_from
from datalayer.errors import QueryValidationError, UnsupportedOperationError


class TestRendering:
    def test_where_clauses(self):
        sql, params = build_where(filters_from({"deleted_at": None, "status": ["a", "b"], "owner": "u1"}))
        assert sql == 'WHERE "deleted_at" IS NULL AND "status" = ANY(%s) AND "owner" = %s'
        assert params == [["a", "b"], "u1"]

    def test_select_with_everything(self):
        descriptor = build_descriptor(
            FindOptions(
                select=["id", "title"],
                where={"deleted_at": None},
                order_by=[OrderBy("position", "desc"), OrderBy("id")],
                limit=10,
                offset=20,
            ),
            20,
        )
        sql, params = render_select("items", descriptor)
        assert sql == (
            'SELECT "id", "title" FROM "items" WHERE "deleted_at" IS NULL '
            'ORDER BY "position" DESC, "id" ASC LIMIT 10 OFFSET 20'
        )
        assert params == []

    def test_select_limit_only(self):
        sql, _ = render_select("items", build_descriptor(FindOptions(limit=5), 20))
        assert sql == 'SELECT * FROM "items" LIMIT 5'

    def test_count(self):
        sql, params = render_count("items", filters_from({"status": "open"}))
        assert sql == 'SELECT count(*) AS count FROM "items" WHERE "status" = %s'
        assert params == ["open"]

    def test_insert_wraps_json_values(self):
        sql, params = render_insert("items", {"title": "a", "meta": {"k": 1}}, None)
        assert sql == 'INSERT INTO "items" ("title", "meta") VALUES (%s, %s) RETURNING *'
        assert params[0] == "a"
        assert isinstance(params[1], Json)

    def test_update_with_returning(self):
        sql, params = render_update("items", {"title": "b"}, filters_from({"id": "1"}), ["id"])
        assert sql == 'UPDATE "items" SET "title" = %s WHERE "id" = %s RETURNING "id"'
        assert params == ["b", "1"]

    def test_delete(self):
        sql, params = render_delete("items", filters_from({"id": ["1", "2"]}), None)
        assert sql == 'DELETE FROM "items" WHERE "id" = ANY(%s) RETURNING *'
        assert params == [["1", "2"]]


class TestProvider:
    @pytest.fixture
    def pg(self):
        return PostgresProvider("postgresql://localhost/app")

    def test_contracts(self, pg):
        assert isinstance(pg, DataProvider)
        assert not isinstance(pg, RealtimeProvider)

    def test_not_connected_until_connect(self, pg):
        assert not pg.is_connected()

    async def test_disconnect_when_never_connected(self, pg):
        await pg.disconnect()
        assert not pg.is_connected()

    async def test_transaction_rejected(self, pg):
        async def work(p):
            return None

        with pytest.raises(UnsupportedOperationError):
            await pg.transaction(work)

    async def test_mutations_require_where(self, pg):
        with pytest.raises(QueryValidationError):
            await pg.update("items", {"title": "x"}, UpdateOptions())
        with pytest.raises(QueryValidationError):
            await pg.delete("items", DeleteOptions(where={}))

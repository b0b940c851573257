"""Unit tests for UniversalEngine."""

import sqlite3

import pytest

from core.exceptions import (
    ConnectionClosedError,
    QueryError,
    TableNotFoundError,
    TransactionError,
)
from database import OrderBy, QueryColumn, QueryTable, UniversalEngine, WhereClause
from database.models import DatabaseSchema


async def _add_user(engine, email, **extra):
    cols = [QueryColumn("email", email)] + [QueryColumn(k, v) for k, v in extra.items()]
    result = await engine.insert(QueryTable("users", cols=cols))
    return result.last_insert_id


@pytest.mark.asyncio
async def test_insert_then_select_by_id(core_engine):
    """Test a row inserted through the engine can be read back by id."""
    user_id = await _add_user(core_engine, "a@example.com", profile={"lang": "en"})
    assert user_id == 1

    row = await core_engine.select(
        QueryTable("users", wheres=[WhereClause("id", user_id)])
    )
    assert row["email"] == "a@example.com"
    assert row["active"] is True
    assert row["profile"] == {"lang": "en"}


@pytest.mark.asyncio
async def test_select_returns_none_when_nothing_matches(core_engine):
    """Test select of a missing row."""
    row = await core_engine.select(QueryTable("users", wheres=[WhereClause("id", 42)]))
    assert row is None


@pytest.mark.asyncio
async def test_boolean_values_are_stored_as_integers(core_engine):
    """Test boolean columns round through 0/1 storage."""
    await _add_user(core_engine, "off@example.com", active=False)
    raw = await core_engine.get_rst("SELECT active FROM users WHERE email = ?", ("off@example.com",))
    assert raw["active"] == 0

    row = await core_engine.select(
        QueryTable("users", wheres=[WhereClause("email", "off@example.com")])
    )
    assert row["active"] is False


@pytest.mark.asyncio
async def test_update_and_delete(core_engine):
    """Test update and delete affect only the matching rows."""
    first = await _add_user(core_engine, "one@example.com")
    await _add_user(core_engine, "two@example.com")

    result = await core_engine.update(QueryTable(
        "users",
        cols=[QueryColumn("email", "uno@example.com")],
        wheres=[WhereClause("id", first)],
    ))
    assert result.rows_affected == 1

    result = await core_engine.delete(QueryTable("users", wheres=[WhereClause("email", "two@example.com")]))
    assert result.rows_affected == 1

    rows = await core_engine.select_all(QueryTable("users"))
    assert [row["email"] for row in rows] == ["uno@example.com"]


@pytest.mark.asyncio
async def test_update_without_where_sends_nothing(core_engine, driver):
    """Test UPDATE with no WHERE clause is refused before reaching the driver."""
    await _add_user(core_engine, "keep@example.com")
    sent = len(driver.statements)

    with pytest.raises(QueryError):
        await core_engine.update(QueryTable("users", cols=[QueryColumn("email", "x@example.com")]))
    with pytest.raises(QueryError):
        await core_engine.delete(QueryTable("users"))

    assert len(driver.statements) == sent
    row = await core_engine.select(QueryTable("users"))
    assert row["email"] == "keep@example.com"


@pytest.mark.asyncio
async def test_insert_without_values_is_rejected(core_engine):
    """Test insert where every column is None."""
    with pytest.raises(QueryError):
        await core_engine.insert(QueryTable("users", cols=[QueryColumn("email", None)]))


@pytest.mark.asyncio
async def test_insert_leaves_none_columns_to_defaults(core_engine):
    """Test None values are omitted so column defaults apply."""
    user_id = await _add_user(core_engine, "d@example.com", active=None, profile=None)
    row = await core_engine.select(QueryTable("users", wheres=[WhereClause("id", user_id)]))
    assert row["active"] is True
    assert row["profile"] is None


@pytest.mark.asyncio
async def test_where_in_order_limit_offset(core_engine):
    """Test IN lists, ordering and pagination."""
    for index in range(5):
        await _add_user(core_engine, f"user{index}@example.com")

    rows = await core_engine.select_all(QueryTable(
        "users",
        cols=[QueryColumn("id")],
        wheres=[WhereClause("id", [1, 2, 3, 4], "IN")],
        orderbys=[OrderBy("id", "desc")],
        limit=2,
        offset=1,
    ))
    assert [row["id"] for row in rows] == [3, 2]

    rows = await core_engine.select_all(QueryTable(
        "users", wheres=[WhereClause("id", 2, ">")], offset=2
    ))
    assert [row["id"] for row in rows] == [5]


@pytest.mark.asyncio
async def test_like_operator(core_engine):
    """Test LIKE comparisons."""
    await _add_user(core_engine, "alice@example.com")
    await _add_user(core_engine, "bob@test.org")
    rows = await core_engine.select_all(
        QueryTable("users", wheres=[WhereClause("email", "%@example.com", "like")])
    )
    assert [row["email"] for row in rows] == ["alice@example.com"]


@pytest.mark.asyncio
async def test_unsafe_descriptors_are_rejected(core_engine):
    """Test identifiers, operators and directions are validated."""
    with pytest.raises(QueryError):
        await core_engine.select_all(QueryTable("users; DROP TABLE users"))
    with pytest.raises(QueryError):
        await core_engine.select_all(QueryTable("users", wheres=[WhereClause("id", 1, "OR 1=1 --")]))
    with pytest.raises(QueryError):
        await core_engine.select_all(QueryTable("users", orderbys=[OrderBy("id", "sideways")]))
    with pytest.raises(QueryError):
        await core_engine.select_all(QueryTable("users", wheres=[WhereClause("id", [], "IN")]))
    assert await core_engine.table_exists("users")


@pytest.mark.asyncio
async def test_transaction_commit_and_rollback(core_engine):
    """Test the transaction context manager."""
    async with core_engine.transaction():
        await _add_user(core_engine, "kept@example.com")

    with pytest.raises(RuntimeError):
        async with core_engine.transaction():
            await _add_user(core_engine, "lost@example.com")
            raise RuntimeError("boom")

    assert not core_engine.in_transaction
    rows = await core_engine.select_all(QueryTable("users"))
    assert [row["email"] for row in rows] == ["kept@example.com"]


@pytest.mark.asyncio
async def test_transaction_state_errors(core_engine):
    """Test invalid transaction transitions."""
    with pytest.raises(TransactionError):
        await core_engine.commit_transaction()
    with pytest.raises(TransactionError):
        await core_engine.rollback_transaction()

    await core_engine.begin_transaction()
    with pytest.raises(TransactionError):
        await core_engine.begin_transaction()
    await core_engine.rollback_transaction()
    assert not core_engine.in_transaction


@pytest.mark.asyncio
async def test_foreign_keys_are_enforced(core_engine):
    """Test FK constraints and ON DELETE CASCADE."""
    user_id = await _add_user(core_engine, "author@example.com")
    await core_engine.insert(QueryTable("posts", cols=[
        QueryColumn("user_id", user_id), QueryColumn("title", "hello"), QueryColumn("score", 1.5),
    ]))

    with pytest.raises(sqlite3.IntegrityError):
        await core_engine.insert(QueryTable("posts", cols=[
            QueryColumn("user_id", 999), QueryColumn("title", "orphan"),
        ]))

    await core_engine.delete(QueryTable("users", wheres=[WhereClause("id", user_id)]))
    assert await core_engine.select_all(QueryTable("posts")) == []


@pytest.mark.asyncio
async def test_truncate_resets_sequence(core_engine):
    """Test truncate_table clears rows and restarts AUTOINCREMENT."""
    await _add_user(core_engine, "a@example.com")
    await _add_user(core_engine, "b@example.com")

    removed = await core_engine.truncate_table("users")
    assert removed == 2
    assert await _add_user(core_engine, "c@example.com") == 1

    with pytest.raises(TableNotFoundError):
        await core_engine.truncate_table("missing")


@pytest.mark.asyncio
async def test_database_info(core_engine):
    """Test introspection helpers."""
    info = await core_engine.get_database_info()
    assert info["name"] == "core"
    assert info["version"] == "1"
    assert info["is_connected"] is True
    assert {"users", "posts", "_schema_info"} <= set(info["tables"])

    columns = {col["name"]: col for col in await core_engine.get_table_info("users")}
    assert columns["id"]["pk"] == 1
    assert columns["email"]["notnull"] == 1


@pytest.mark.asyncio
async def test_drop_table(core_engine):
    """Test drop_table removes the table."""
    await core_engine.drop_table("posts")
    assert not await core_engine.table_exists("posts")


@pytest.mark.asyncio
async def test_closed_engine_refuses_work(core_engine):
    """Test using an engine after close."""
    await core_engine.close()
    assert not core_engine.is_open
    with pytest.raises(ConnectionClosedError):
        await core_engine.select_all(QueryTable("users"))


def test_convert_json_to_query_table():
    """Test building a descriptor from a record."""
    query = UniversalEngine.convert_json_to_query_table("users", {"id": 7, "email": "x@example.com"})
    assert [col.name for col in query.cols] == ["id", "email"]
    assert [(w.name, w.value) for w in query.wheres] == [("id", 7)]


def test_create_table_sql_composite_key_and_custom_types():
    """Test DDL for composite keys and a custom type mapping."""
    schema = DatabaseSchema.from_dict({
        "database_name": "tags",
        "version": "1",
        "type_mapping": {"sqlite": {"uuid": "BLOB"}},
        "schemas": {
            "item_tags": {
                "cols": [
                    {"name": "item_id", "type": "uuid", "constraints": "PRIMARY"},
                    {"name": "tag", "type": "string", "constraints": "PRIMARY NOT NULL"},
                    {"name": "weight", "type": "float", "default": 1.0},
                ]
            }
        },
    })
    engine = UniversalEngine(handle=None, name="tags", schema=schema)
    sql = engine._create_table_sql(schema.schemas["item_tags"])

    assert '"item_id" BLOB' in sql
    assert 'PRIMARY KEY ("item_id", "tag")' in sql
    assert "AUTOINCREMENT" not in sql
    assert '"weight" REAL DEFAULT 1.0' in sql

"""
SQLite relational adapter for DocDB.

This module maps collections onto SQLite tables:
- One table per collection, one column per non-virtual attribute
- One permissions table per collection for read scoping
- FTS5 external-content tables for fulltext indexes

Table schema (``{ns}`` is the namespace, ``{c}`` the collection id):

    {ns}_{c}:
        - _id INTEGER PRIMARY KEY AUTOINCREMENT   ($internalId)
        - _uid TEXT UNIQUE                        ($id)
        - _createdAt TEXT
        - _updatedAt TEXT
        - _permissions TEXT (JSON list)
        - one column per attribute; arrays and list relationships as JSON

    {ns}_{c}_perms:
        - _type TEXT (create/read/update/delete)
        - _permission TEXT (role)
        - _document TEXT (_uid)
        - PRIMARY KEY (_document, _type, _permission)
        - INDEX on (_permission, _type, _document)

    {ns}_{c}_fts_{index}:
        - FTS5 virtual table over the indexed column, kept in sync by triggers

Declared column types carry the value encoding: ``JSON`` columns hold JSON
text, ``BOOLEAN`` columns hold 0/1.

Invariants:
    - All writes run inside a transaction (BEGIN IMMEDIATE ... COMMIT)
    - transaction() nests: inner scopes join the outermost one
    - Permissions table is always consistent with _permissions
    - UNIQUE constraint failures surface as Duplicate

How to change safely:
    - Keep query semantics aligned with adapters/memory.py
    - Column encodings are read from declared types; keep them stable
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from ..auth.roles import Permission
from ..document import Document
from ..errors import Duplicate, NotFound
from ..query import query as q
from ..query.query import Query
from ..schema.types import INTEGER_MAX, Attribute, AttributeType, IndexType, OrderType
from .base import CURSOR_AFTER, CURSOR_BEFORE, Feature, IndexSpec, order_directions

logger = logging.getLogger(__name__)

# SQLITE_MAX_COLUMN minus the internal columns.
MAX_COLUMNS = 2000 - 5
MAX_INDEXES = 64

_TOKEN = re.compile(r"\w+", re.UNICODE)

# Reserved document keys and their physical columns.
INTERNAL_COLUMNS = {
    "$id": "_uid",
    "$internalId": "_id",
    "$createdAt": "_createdAt",
    "$updatedAt": "_updatedAt",
}


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _column_type(attribute: Attribute) -> str:
    if attribute.array:
        return "JSON"
    if attribute.is_relationship:
        return "JSON" if attribute.relationship.relation_type.is_list else "TEXT"
    return {
        AttributeType.STRING: "TEXT",
        AttributeType.INTEGER: "INTEGER",
        AttributeType.FLOAT: "REAL",
        AttributeType.BOOLEAN: "BOOLEAN",
        AttributeType.DATETIME: "TEXT",
    }[attribute.type]


def _is_unique_violation(error: sqlite3.IntegrityError) -> bool:
    return "UNIQUE constraint failed" in str(error)


class SQLiteAdapter:
    """SQLite implementation of Adapter.

    A single connection is held for the adapter's lifetime so that
    ``:memory:`` databases persist across calls.

    Thread safety:
        A re-entrant lock serializes statement execution; the connection is
        opened with check_same_thread=False.

    Example:
        >>> adapter = SQLiteAdapter(":memory:", namespace="app")
        >>> adapter.create_collection("city", [Attribute("name", AttributeType.STRING, 64)], [])
        True
    """

    def __init__(
        self,
        path: str = ":memory:",
        namespace: str = "docdb",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Open the database.

        Args:
            path: SQLite database file, or ":memory:"
            namespace: Prefix applied to table names
            wal_mode: Enable SQLite WAL journal mode (file databases only)
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.path = path
        self._namespace = namespace
        self.busy_timeout_ms = busy_timeout_ms
        self._lock = threading.RLock()
        self._depth = 0
        self._column_types: dict[str, dict[str, str]] = {}

        self._conn = sqlite3.connect(
            path,
            timeout=busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")
        self._conn.execute(f"PRAGMA cache_size = {cache_size_pages}")
        if wal_mode and path != ":memory:":
            self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA synchronous = NORMAL")

    @property
    def namespace(self) -> str:
        return self._namespace

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _table(self, collection: str) -> str:
        return f"{self._namespace}_{collection}"

    def _perms(self, collection: str) -> str:
        return f"{self._table(collection)}_perms"

    def _fts(self, collection: str, key: str) -> str:
        return f"{self._table(collection)}_fts_{key}"

    # Capabilities

    def get_support(self, feature: Feature) -> bool:
        return feature in (
            Feature.FULLTEXT_INDEX,
            Feature.UNIQUE_INDEX,
            Feature.TRANSACTIONS,
            Feature.QUERY_CONTAINS,
        )

    def get_limit_for_attributes(self) -> int:
        return MAX_COLUMNS

    def get_limit_for_indexes(self) -> int:
        return MAX_INDEXES

    def get_document_size_limit(self) -> int:
        return 0

    def get_limit_for_integer(self) -> int:
        # INTEGER columns are signed 64-bit.
        return INTEGER_MAX

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed writes in one transaction.

        The outermost scope issues BEGIN IMMEDIATE and COMMIT, or ROLLBACK
        when the block raises. Inner scopes only join.
        """
        with self._lock:
            if self._depth == 0:
                self._conn.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield
            except BaseException:
                self._depth -= 1
                if self._depth == 0:
                    self._conn.execute("ROLLBACK")
                raise
            self._depth -= 1
            if self._depth == 0:
                self._conn.execute("COMMIT")

    # Schema

    def _columns(self, collection: str) -> dict[str, str]:
        table = self._table(collection)
        cached = self._column_types.get(table)
        if cached is None:
            rows = self._conn.execute(f"PRAGMA table_info({_quote(table)})").fetchall()
            if not rows:
                raise NotFound(
                    f"Collection '{collection}' not found",
                    resource_type="collection",
                    resource_id=collection,
                )
            cached = {row["name"]: (row["type"] or "").upper() for row in rows}
            self._column_types[table] = cached
        return cached

    def _invalidate(self, collection: str) -> None:
        self._column_types.pop(self._table(collection), None)

    def collection_exists(self, collection: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
                (self._table(collection),),
            ).fetchone()
            return row is not None

    def create_collection(
        self,
        collection: str,
        attributes: Sequence[Attribute],
        indexes: Sequence[IndexSpec],
    ) -> bool:
        if self.collection_exists(collection):
            raise Duplicate(f"Collection '{collection}' already exists", collection=collection)

        table = _quote(self._table(collection))
        perms = _quote(self._perms(collection))
        columns = [
            f"{_quote(a.key)} {_column_type(a)}" for a in attributes if not a.is_virtual
        ]
        with self.transaction():
            self._conn.execute(
                f"""
                CREATE TABLE {table} (
                    _id INTEGER PRIMARY KEY AUTOINCREMENT,
                    _uid TEXT NOT NULL UNIQUE,
                    _createdAt TEXT,
                    _updatedAt TEXT,
                    _permissions TEXT NOT NULL DEFAULT '[]'
                    {''.join(', ' + c for c in columns)}
                )
                """
            )
            self._conn.execute(
                f"""
                CREATE TABLE {perms} (
                    _type TEXT NOT NULL,
                    _permission TEXT NOT NULL,
                    _document TEXT NOT NULL,
                    PRIMARY KEY (_document, _type, _permission)
                )
                """
            )
            self._conn.execute(
                f"CREATE INDEX {_quote(self._perms(collection) + '_permission')} "
                f"ON {perms} (_permission, _type, _document)"
            )
            for index in indexes:
                self._create_index(collection, index.key, index.type, index.attributes)
        self._invalidate(collection)

        logger.debug("Created table", extra={"table": self._table(collection)})
        return True

    def delete_collection(self, collection: str) -> bool:
        if not self.collection_exists(collection):
            return False
        with self.transaction():
            for name in self._fts_tables(collection):
                self._conn.execute(f"DROP TABLE IF EXISTS {_quote(name)}")
            self._conn.execute(f"DROP TABLE IF EXISTS {_quote(self._table(collection))}")
            self._conn.execute(f"DROP TABLE IF EXISTS {_quote(self._perms(collection))}")
        self._invalidate(collection)
        return True

    def create_attribute(self, collection: str, attribute: Attribute) -> bool:
        if attribute.is_virtual:
            return True
        columns = self._columns(collection)
        if attribute.key in columns:
            raise Duplicate(
                f"Attribute '{attribute.key}' already exists",
                collection=collection,
                key=attribute.key,
            )
        with self.transaction():
            self._conn.execute(
                f"ALTER TABLE {_quote(self._table(collection))} "
                f"ADD COLUMN {_quote(attribute.key)} {_column_type(attribute)}"
            )
        self._invalidate(collection)
        return True

    def delete_attribute(self, collection: str, key: str) -> bool:
        if key not in self._columns(collection):
            return False
        with self.transaction():
            self._conn.execute(
                f"ALTER TABLE {_quote(self._table(collection))} DROP COLUMN {_quote(key)}"
            )
        self._invalidate(collection)
        return True

    def create_index(
        self,
        collection: str,
        key: str,
        type: IndexType,
        attributes: Sequence[str],
        lengths: Sequence[int] = (),
        orders: Sequence[OrderType] = (),
    ) -> bool:
        self._columns(collection)
        with self.transaction():
            self._create_index(collection, key, type, attributes, orders)
        return True

    def _create_index(
        self,
        collection: str,
        key: str,
        type: IndexType,
        attributes: Sequence[str],
        orders: Sequence[OrderType] = (),
    ) -> None:
        table = self._table(collection)
        columns = [INTERNAL_COLUMNS.get(a, a) for a in attributes]

        if type == IndexType.FULLTEXT:
            fts = self._fts(collection, key)
            if self._table_exists(fts):
                raise Duplicate(f"Index '{key}' already exists", collection=collection, key=key)
            cols = ", ".join(_quote(c) for c in columns)
            new_cols = ", ".join(f"new.{_quote(c)}" for c in columns)
            old_cols = ", ".join(f"old.{_quote(c)}" for c in columns)
            self._conn.execute(
                f"CREATE VIRTUAL TABLE {_quote(fts)} USING fts5("
                f"{cols}, content={_quote(table)}, content_rowid='_id')"
            )
            self._conn.execute(
                f"CREATE TRIGGER {_quote(fts + '_ai')} AFTER INSERT ON {_quote(table)} BEGIN "
                f"INSERT INTO {_quote(fts)}(rowid, {cols}) VALUES (new._id, {new_cols}); END"
            )
            self._conn.execute(
                f"CREATE TRIGGER {_quote(fts + '_ad')} AFTER DELETE ON {_quote(table)} BEGIN "
                f"INSERT INTO {_quote(fts)}({_quote(fts)}, rowid, {cols}) "
                f"VALUES ('delete', old._id, {old_cols}); END"
            )
            self._conn.execute(
                f"CREATE TRIGGER {_quote(fts + '_au')} AFTER UPDATE ON {_quote(table)} BEGIN "
                f"INSERT INTO {_quote(fts)}({_quote(fts)}, rowid, {cols}) "
                f"VALUES ('delete', old._id, {old_cols}); "
                f"INSERT INTO {_quote(fts)}(rowid, {cols}) VALUES (new._id, {new_cols}); END"
            )
            self._conn.execute(f"INSERT INTO {_quote(fts)}({_quote(fts)}) VALUES ('rebuild')")
            return

        parts = []
        for i, column in enumerate(columns):
            direction = orders[i].value if i < len(orders) else ""
            parts.append(f"{_quote(column)} {direction}".strip())
        unique = "UNIQUE " if type == IndexType.UNIQUE else ""
        try:
            self._conn.execute(
                f"CREATE {unique}INDEX {_quote(table + '_' + key)} "
                f"ON {_quote(table)} ({', '.join(parts)})"
            )
        except sqlite3.IntegrityError as e:
            if _is_unique_violation(e):
                raise Duplicate(
                    f"Existing documents violate unique index '{key}'",
                    collection=collection,
                    key=key,
                ) from e
            raise
        except sqlite3.OperationalError as e:
            if "already exists" in str(e):
                raise Duplicate(f"Index '{key}' already exists", collection=collection, key=key) from e
            raise

    def delete_index(self, collection: str, key: str) -> bool:
        fts = self._fts(collection, key)
        with self.transaction():
            if self._table_exists(fts):
                for suffix in ("_ai", "_ad", "_au"):
                    self._conn.execute(f"DROP TRIGGER IF EXISTS {_quote(fts + suffix)}")
                self._conn.execute(f"DROP TABLE {_quote(fts)}")
                return True
            name = f"{self._table(collection)}_{key}"
            row = self._conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'index' AND name = ?", (name,)
            ).fetchone()
            if row is None:
                return False
            self._conn.execute(f"DROP INDEX {_quote(name)}")
            return True

    def _table_exists(self, name: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
        ).fetchone()
        return row is not None

    def _fts_tables(self, collection: str) -> list[str]:
        prefix = self._fts(collection, "")
        rows = self._conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND sql LIKE 'CREATE VIRTUAL TABLE%' "
            "AND substr(name, 1, ?) = ?",
            (len(prefix), prefix),
        ).fetchall()
        return [row["name"] for row in rows]

    def _fts_for(self, collection: str, attribute: str) -> str | None:
        for name in self._fts_tables(collection):
            rows = self._conn.execute(f"PRAGMA table_info({_quote(name)})").fetchall()
            if [row["name"] for row in rows] == [INTERNAL_COLUMNS.get(attribute, attribute)]:
                return name
        return None

    # Documents

    def _encode(self, column_type: str, value: Any) -> Any:
        if value is None:
            return None
        if column_type == "JSON":
            return json.dumps(value)
        if column_type == "BOOLEAN":
            return int(bool(value))
        return value

    def _decode(self, collection: str, row: sqlite3.Row) -> Document:
        columns = self._columns(collection)
        data: dict[str, Any] = {
            "$id": row["_uid"],
            "$internalId": row["_id"],
            "$collection": collection,
            "$createdAt": row["_createdAt"],
            "$updatedAt": row["_updatedAt"],
            "$permissions": json.loads(row["_permissions"] or "[]"),
        }
        for name in row.keys():
            if name.startswith("_"):
                continue
            value = row[name]
            column_type = columns.get(name, "")
            if value is not None:
                if column_type == "JSON":
                    value = json.loads(value)
                elif column_type == "BOOLEAN":
                    value = bool(value)
            data[name] = value
        return Document(data)

    def _row_values(self, collection: str, document: Document) -> dict[str, Any]:
        columns = self._columns(collection)
        values: dict[str, Any] = {
            "_uid": document.get_id(),
            "_createdAt": document.get_created_at(),
            "_updatedAt": document.get_updated_at(),
            "_permissions": json.dumps(document.get_permissions()),
        }
        for key, value in document.get_attributes().items():
            if key in columns and not key.startswith("_"):
                values[key] = self._encode(columns[key], value)
        return values

    def _write_permissions(self, collection: str, document: Document) -> None:
        perms = _quote(self._perms(collection))
        document_id = document.get_id()
        self._conn.execute(f"DELETE FROM {perms} WHERE _document = ?", (document_id,))
        for raw in document.get_permissions():
            permission = Permission.parse(raw)
            for action in permission.actions():
                self._conn.execute(
                    f"INSERT OR IGNORE INTO {perms} (_type, _permission, _document) VALUES (?, ?, ?)",
                    (action, permission.role, document_id),
                )

    def create_document(self, collection: str, document: Document) -> Document:
        values = self._row_values(collection, document)
        names = ", ".join(_quote(k) for k in values)
        placeholders = ", ".join("?" for _ in values)
        try:
            with self.transaction():
                cursor = self._conn.execute(
                    f"INSERT INTO {_quote(self._table(collection))} ({names}) VALUES ({placeholders})",
                    list(values.values()),
                )
                self._write_permissions(collection, document)
        except sqlite3.IntegrityError as e:
            if _is_unique_violation(e):
                raise Duplicate(
                    f"Document '{document.get_id()}' violates a unique constraint in '{collection}': {e}",
                    collection=collection,
                    key="$id" if "._uid" in str(e) else None,
                ) from e
            raise

        logger.debug(
            "Inserted document",
            extra={"collection": collection, "document_id": document.get_id()},
        )
        stored = Document(document)
        stored["$internalId"] = cursor.lastrowid
        stored["$collection"] = collection
        return stored

    def update_document(self, collection: str, document: Document) -> Document:
        values = self._row_values(collection, document)
        values.pop("_uid")
        assignments = ", ".join(f"{_quote(k)} = ?" for k in values)
        try:
            with self.transaction():
                cursor = self._conn.execute(
                    f"UPDATE {_quote(self._table(collection))} SET {assignments} WHERE _uid = ?",
                    [*values.values(), document.get_id()],
                )
                if cursor.rowcount == 0:
                    raise NotFound(
                        f"Document '{document.get_id()}' not found in '{collection}'",
                        resource_type="document",
                        resource_id=document.get_id(),
                        collection=collection,
                    )
                self._write_permissions(collection, document)
        except sqlite3.IntegrityError as e:
            if _is_unique_violation(e):
                raise Duplicate(
                    f"Document '{document.get_id()}' violates a unique constraint in '{collection}': {e}",
                    collection=collection,
                ) from e
            raise
        return self.get_document(collection, document.get_id())

    def delete_document(self, collection: str, document_id: str) -> bool:
        with self.transaction():
            cursor = self._conn.execute(
                f"DELETE FROM {_quote(self._table(collection))} WHERE _uid = ?",
                (document_id,),
            )
            self._conn.execute(
                f"DELETE FROM {_quote(self._perms(collection))} WHERE _document = ?",
                (document_id,),
            )
        return cursor.rowcount > 0

    def get_document(self, collection: str, document_id: str) -> Document:
        with self._lock:
            row = self._conn.execute(
                f"SELECT * FROM {_quote(self._table(collection))} WHERE _uid = ?",
                (document_id,),
            ).fetchone()
            if row is None:
                return Document()
            return self._decode(collection, row)

    # Queries

    def _where(
        self,
        collection: str,
        queries: Sequence[Query],
        roles: Sequence[str] | None,
    ) -> tuple[list[str], list[Any]]:
        columns = self._columns(collection)
        conditions: list[str] = []
        params: list[Any] = []

        for query in queries:
            column = INTERNAL_COLUMNS.get(query.attribute, query.attribute)
            ref = _quote(column)
            column_type = columns.get(column, "")
            values = [self._encode(column_type if column_type != "JSON" else "", v) for v in query.values]
            method = query.method
            marks = ", ".join("?" for _ in values)

            if method == q.TYPE_EQUAL:
                conditions.append(f"{ref} IN ({marks})")
            elif method == q.TYPE_NOT_EQUAL:
                conditions.append(f"{ref} NOT IN ({marks})")
            elif method == q.TYPE_LESSER:
                conditions.append(f"{ref} < ?")
            elif method == q.TYPE_LESSER_EQUAL:
                conditions.append(f"{ref} <= ?")
            elif method == q.TYPE_GREATER:
                conditions.append(f"{ref} > ?")
            elif method == q.TYPE_GREATER_EQUAL:
                conditions.append(f"{ref} >= ?")
            elif method == q.TYPE_BETWEEN:
                conditions.append(f"{ref} BETWEEN ? AND ?")
            elif method == q.TYPE_IS_NULL:
                conditions.append(f"{ref} IS NULL")
            elif method == q.TYPE_IS_NOT_NULL:
                conditions.append(f"{ref} IS NOT NULL")
            elif method == q.TYPE_CONTAINS:
                conditions.append(f"EXISTS (SELECT 1 FROM json_each({ref}) WHERE json_each.value IN ({marks}))")
            elif method == q.TYPE_SEARCH:
                fts = self._fts_for(collection, query.attribute)
                terms = _TOKEN.findall(str(query.value))
                if fts is None or not terms:
                    conditions.append("0")
                    continue
                conditions.append(f"_id IN (SELECT rowid FROM {_quote(fts)} WHERE {_quote(fts)} MATCH ?)")
                values = [" OR ".join('"' + t + '"' for t in terms)]
            else:
                raise ValueError(f"Unsupported query method: {method}")
            params.extend(values)

        if roles is not None:
            marks = ", ".join("?" for _ in roles)
            conditions.append(
                f"_uid IN (SELECT _document FROM {_quote(self._perms(collection))} "
                f"WHERE _permission IN ({marks}) AND _type = 'read')"
            )
            params.extend(roles)

        return conditions, params

    def _cursor_condition(
        self,
        collection: str,
        orders: list[tuple[str, OrderType]],
        cursor: Document,
    ) -> tuple[str, list[Any]]:
        """Rows strictly after ``cursor`` in the given order."""
        columns = self._columns(collection)
        branches: list[str] = []
        params: list[Any] = []
        for i, (attribute, direction) in enumerate(orders):
            parts: list[str] = []
            branch_params: list[Any] = []
            for previous, _ in orders[:i]:
                column = INTERNAL_COLUMNS.get(previous, previous)
                parts.append(f"{_quote(column)} IS ?")
                branch_params.append(self._encode(columns.get(column, ""), cursor.get(previous)))

            column = INTERNAL_COLUMNS.get(attribute, attribute)
            ref = _quote(column)
            value = self._encode(columns.get(column, ""), cursor.get(attribute))
            if direction == OrderType.ASC:
                if value is None:
                    parts.append(f"{ref} IS NOT NULL")
                else:
                    parts.append(f"{ref} > ?")
                    branch_params.append(value)
            else:
                if value is None:
                    parts.append("0")
                else:
                    parts.append(f"({ref} < ? OR {ref} IS NULL)")
                    branch_params.append(value)

            branches.append("(" + " AND ".join(parts) + ")")
            params.extend(branch_params)
        return "(" + " OR ".join(branches) + ")", params

    def find(
        self,
        collection: str,
        queries: Sequence[Query] = (),
        limit: int | None = 25,
        offset: int = 0,
        order_attributes: Sequence[str] = (),
        order_types: Sequence[OrderType] = (),
        cursor: Document | None = None,
        cursor_direction: str = CURSOR_AFTER,
        roles: Sequence[str] | None = None,
    ) -> list[Document]:
        with self._lock:
            conditions, params = self._where(collection, queries, roles)

            orders = list(order_directions(order_attributes, order_types))
            before = cursor is not None and cursor_direction == CURSOR_BEFORE
            if before:
                orders = [
                    (a, OrderType.DESC if d == OrderType.ASC else OrderType.ASC) for a, d in orders
                ]
            if cursor is not None:
                condition, cursor_params = self._cursor_condition(collection, orders, cursor)
                conditions.append(condition)
                params.extend(cursor_params)

            sql = f"SELECT * FROM {_quote(self._table(collection))}"
            if conditions:
                sql += " WHERE " + " AND ".join(conditions)
            sql += " ORDER BY " + ", ".join(
                f"{_quote(INTERNAL_COLUMNS.get(a, a))} {d.value}" for a, d in orders
            )
            sql += " LIMIT ? OFFSET ?"
            params.extend([-1 if limit is None else limit, offset])

            rows = self._conn.execute(sql, params).fetchall()
            documents = [self._decode(collection, row) for row in rows]

        if before:
            documents.reverse()
        return documents

    def count(
        self,
        collection: str,
        queries: Sequence[Query] = (),
        max: int | None = None,
        roles: Sequence[str] | None = None,
    ) -> int:
        with self._lock:
            conditions, params = self._where(collection, queries, roles)
            inner = f"SELECT 1 FROM {_quote(self._table(collection))}"
            if conditions:
                inner += " WHERE " + " AND ".join(conditions)
            inner += " LIMIT ?"
            params.append(-1 if max is None else max)
            row = self._conn.execute(f"SELECT COUNT(1) AS total FROM ({inner})", params).fetchone()
            return int(row["total"])

"""
Integration tests for onDelete policies and write failure behaviour.

Tests cover:
- restrict blocks deletes while related documents exist
- setNull clears the other side of two-way relationships
- cascade deletes related documents once, even through cycles
- Many-to-many cascade removes junction records only
- Failed writes: rolled back on SQLite, earlier writes kept in memory
- The cache never outlives a rollback or serves pre-commit reads
"""

from contextlib import contextmanager

import pytest

from dbaas.docdb import (
    Attribute,
    AttributeType,
    Database,
    InMemoryAdapter,
    Permission,
    RelationType,
    Restricted,
    Role,
    SQLiteAdapter,
    Structure,
)
from dbaas.docdb.cache import Cache, MemoryCacheAdapter
from dbaas.docdb.relationships import junction_collection_id

OPEN = [
    Permission.create(Role.any()),
    Permission.read(Role.any()),
    Permission.update(Role.any()),
    Permission.delete(Role.any()),
]


def _named(database, *collection_ids):
    for collection_id in collection_ids:
        database.create_collection(
            collection_id,
            attributes=[Attribute("name", AttributeType.STRING, size=64)],
            permissions=OPEN,
        )


class TestRestrict:
    """Tests for the restrict policy."""

    @pytest.fixture
    def db(self, database):
        """country <-> city, two-way, restrict."""
        _named(database, "country", "city")
        database.create_relationship("country", "city", RelationType.ONE_TO_ONE, two_way=True)
        database.create_document("country", {"$id": "country1", "city": {"$id": "city1"}})
        return database

    def test_parent_blocked(self, db):
        """The parent can't be deleted while linked."""
        with pytest.raises(Restricted) as exc_info:
            db.delete_document("country", "country1")
        assert exc_info.value.code == "RESTRICTED"
        assert not db.get_document("country", "country1").is_empty()
        assert not db.get_document("city", "city1").is_empty()

    def test_child_blocked(self, db):
        """A two-way one-to-one child is restricted too."""
        with pytest.raises(Restricted):
            db.delete_document("city", "city1")

    def test_allowed_once_unlinked(self, db):
        """Clearing the link lifts the restriction."""
        db.update_document("country", "country1", {"city": None})
        assert db.delete_document("country", "country1")
        assert db.get_document("city", "city1")["country"] is None


class TestSetNull:
    """Tests for the setNull policy."""

    def test_two_way_side_cleared(self, database):
        """Deleting one side nulls the other."""
        _named(database, "country", "city")
        database.create_relationship("country", "city", "oneToOne", two_way=True, on_delete="setNull")
        database.create_document("country", {"$id": "country1", "city": {"$id": "city1"}})
        database.delete_document("country", "country1")
        city = database.get_document("city", "city1")
        assert not city.is_empty()
        assert city["country"] is None

    def test_owner_list_shrinks(self, database):
        """Deleting a child removes it from its owner's list."""
        _named(database, "author", "book")
        database.create_relationship(
            "author", "book", "oneToMany", two_way=True, key="books", two_way_key="author", on_delete="setNull"
        )
        database.create_document("author", {"$id": "author1", "books": [{"$id": "book1"}, {"$id": "book2"}]})
        database.delete_document("book", "book1")
        assert [b.get_id() for b in database.get_document("author", "author1")["books"]] == ["book2"]

    def test_one_way_leaves_related(self, database):
        """One-way relationships keep the related document untouched."""
        _named(database, "person", "library")
        database.create_relationship("person", "library", "oneToOne", on_delete="setNull")
        database.create_document("person", {"$id": "person1", "library": {"$id": "library1", "name": "Central"}})
        database.delete_document("person", "person1")
        assert database.get_document("library", "library1")["name"] == "Central"


class TestCascade:
    """Tests for the cascade policy."""

    def test_children_deleted(self, database):
        """Deleting the owner deletes every child."""
        _named(database, "author", "book")
        database.create_relationship(
            "author", "book", "oneToMany", two_way=True, key="books", two_way_key="author", on_delete="cascade"
        )
        database.create_document("author", {"$id": "author1", "books": [{"$id": "book1"}, {"$id": "book2"}]})
        database.delete_document("author", "author1")
        assert database.get_document("book", "book1").is_empty()
        assert database.get_document("book", "book2").is_empty()
        assert database.count("book") == 0

    def test_many_to_one_never_cascades(self, database):
        """Deleting a child only unlinks it from the owner."""
        _named(database, "author", "book")
        database.create_relationship(
            "author", "book", "oneToMany", two_way=True, key="books", two_way_key="author", on_delete="cascade"
        )
        database.create_document("author", {"$id": "author1", "books": [{"$id": "book1"}, {"$id": "book2"}]})
        database.delete_document("book", "book1")
        author = database.get_document("author", "author1")
        assert [b.get_id() for b in author["books"]] == ["book2"]

    def test_cycle_deleted_once(self, database):
        """A two-way cascade doesn't revisit the document being deleted."""
        _named(database, "a", "b")
        database.create_relationship("a", "b", "oneToOne", two_way=True, on_delete="cascade")
        database.create_document("a", {"$id": "a1", "b": {"$id": "b1"}})
        assert database.delete_document("a", "a1")
        assert database.get_document("a", "a1").is_empty()
        assert database.get_document("b", "b1").is_empty()

    def test_chain(self, database):
        """Cascades follow one-way relationships across collections."""
        _named(database, "a", "b", "c")
        database.create_relationship("a", "b", "oneToOne", on_delete="cascade")
        database.create_relationship("b", "c", "oneToOne", on_delete="cascade")
        database.create_document("a", {"$id": "a1", "b": {"$id": "b1", "c": {"$id": "c1"}}})
        database.delete_document("a", "a1")
        assert database.count("b") == 0
        assert database.count("c") == 0

    def test_elevated(self, database):
        """Cascaded deletes don't need delete permission on related documents."""
        _named(database, "author")
        database.create_collection(
            "book",
            attributes=[Attribute("name", AttributeType.STRING, size=64)],
            permissions=[Permission.create(Role.any())],
        )
        database.create_relationship("author", "book", "oneToMany", key="books", on_delete="cascade")
        database.create_document("author", {"$id": "author1", "books": [{"$id": "book1"}]})
        database.delete_document("author", "author1")
        assert database.adapter.get_document("book", "book1").is_empty()

    def test_many_to_many_keeps_related(self, database):
        """Cascade over many-to-many removes only junction records."""
        _named(database, "student", "course")
        database.create_relationship(
            "student", "course", "manyToMany", two_way=True, key="courses", two_way_key="students", on_delete="cascade"
        )
        database.create_document("student", {"$id": "student1", "courses": [{"$id": "course1"}, {"$id": "course2"}]})
        database.create_document("student", {"$id": "student2", "courses": ["course1"]})
        database.delete_document("student", "student1")

        assert database.count("course") == 2
        assert database.adapter.count(junction_collection_id("student", "courses")) == 1
        students = database.get_document("course", "course1")["students"]
        assert [s.get_id() for s in students] == ["student2"]


class TestWriteFailures:
    """Tests for backend failures in the middle of a write."""

    @pytest.fixture
    def memory_db(self):
        """Database on the in-memory adapter."""
        database = Database(InMemoryAdapter(namespace="fail"), cache=Cache(MemoryCacheAdapter(), namespace="fail"))
        _named(database, "person", "library")
        database.create_relationship("person", "library", "oneToOne")
        return database

    @pytest.fixture
    def sqlite_db(self):
        """Database on an in-memory SQLite adapter."""
        adapter = SQLiteAdapter(":memory:", namespace="fail")
        database = Database(adapter, cache=Cache(MemoryCacheAdapter(), namespace="fail"))
        _named(database, "person", "library")
        database.create_relationship("person", "library", "oneToOne")
        yield database
        adapter.close()

    def test_memory_keeps_earlier_writes(self, memory_db):
        """Without transactions the embedded document survives."""
        memory_db.adapter.inject_failure(RuntimeError("backend down"), after=1)
        with pytest.raises(RuntimeError, match="backend down"):
            memory_db.create_document("person", {"$id": "person1", "library": {"$id": "library1"}})
        assert not memory_db.get_document("library", "library1").is_empty()
        assert memory_db.get_document("person", "person1").is_empty()

    def test_sqlite_rolls_back(self, sqlite_db, monkeypatch):
        """The whole write, embedded documents included, is rolled back."""
        adapter = sqlite_db.adapter
        original = adapter.create_document

        def failing(collection, document):
            if collection == "person":
                raise RuntimeError("backend down")
            return original(collection, document)

        monkeypatch.setattr(adapter, "create_document", failing)
        with pytest.raises(RuntimeError, match="backend down"):
            sqlite_db.create_document("person", {"$id": "person1", "library": {"$id": "library1"}})
        assert sqlite_db.get_document("library", "library1").is_empty()
        assert sqlite_db.get_document("person", "person1").is_empty()

    @staticmethod
    def _write_twice_then_fail(database):
        """Update library1 through an embedded document, then fail validation."""
        database.create_relationship("person", "library", "oneToMany", key="libraries")
        database.create_document("library", {"$id": "library1", "name": "old"})
        assert database.get_document("library", "library1")["name"] == "old"
        with pytest.raises(Structure):
            database.create_document(
                "person",
                {
                    "$id": "person1",
                    "libraries": [
                        {"$id": "library1", "name": "new"},
                        {"$id": "library1", "name": 123},
                    ],
                },
            )

    def test_rollback_leaves_no_stale_cache(self, sqlite_db):
        """Cached documents match storage after a rolled-back write."""
        self._write_twice_then_fail(sqlite_db)
        assert sqlite_db.adapter.get_document("library", "library1")["name"] == "old"
        assert sqlite_db.cache.load_document("library", "library1") is None
        assert sqlite_db.get_document("library", "library1")["name"] == "old"

    def test_partial_write_visible_in_memory(self, memory_db):
        """Without transactions the cache agrees with the kept write."""
        self._write_twice_then_fail(memory_db)
        assert memory_db.adapter.get_document("library", "library1")["name"] == "new"
        assert memory_db.get_document("library", "library1")["name"] == "new"

    def test_read_before_commit_not_left_in_cache(self, tmp_path, monkeypatch):
        """A reader caching the old row mid-write is invalidated after COMMIT."""
        path = str(tmp_path / "docdb.sqlite")
        cache = Cache(MemoryCacheAdapter(), namespace="fail")
        writer_adapter = SQLiteAdapter(path, namespace="fail")
        reader_adapter = SQLiteAdapter(path, namespace="fail")
        try:
            writer = Database(writer_adapter, cache=cache)
            _named(writer, "library")
            writer.create_document("library", {"$id": "library1", "name": "old"})
            reader = Database(reader_adapter, cache=cache)

            original = writer_adapter.transaction

            @contextmanager
            def read_before_commit():
                with original():
                    yield
                    assert reader.get_document("library", "library1")["name"] == "old"

            monkeypatch.setattr(writer_adapter, "transaction", read_before_commit)
            writer.update_document("library", "library1", {"name": "new"})

            assert reader.get_document("library", "library1")["name"] == "new"
        finally:
            writer_adapter.close()
            reader_adapter.close()

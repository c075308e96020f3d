"""
Integration tests for relationships.

Tests cover:
- One-way relationships never touch the related schema
- Two-way one-to-one with embedded documents on both sides
- One-to-many ownership moves
- Many-to-many junction records and idempotent linking
- Bounded expansion over chains and cycles
- Relationship schema lifecycle
"""

import pytest

from dbaas.docdb import (
    Attribute,
    AttributeType,
    AuthorizationError,
    Duplicate,
    NotFound,
    Permission,
    Query,
    RelationType,
    Role,
    Structure,
)
from dbaas.docdb.relationships import (
    JUNCTION_PREFIX,
    LinkChange,
    junction_collection_id,
    junction_document_id,
)

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


class TestJunctionHelpers:
    """Tests for junction naming."""

    def test_collection_id(self):
        """Junction collections are internal and keyed by owner and attribute."""
        assert junction_collection_id("student", "courses") == "_junction_student_courses"
        assert junction_collection_id("a", "b").startswith(JUNCTION_PREFIX)

    def test_document_id(self):
        """Record ids are deterministic per ordered pair."""
        assert junction_document_id("s1", "c1") == junction_document_id("s1", "c1")
        assert junction_document_id("s1", "c1") != junction_document_id("c1", "s1")
        assert len(junction_document_id("s1", "c1")) == 32


class TestOneWay:
    """Tests for one-way relationships."""

    @pytest.fixture
    def db(self, database):
        """person -> library, one-to-one, one-way."""
        _named(database, "person", "library")
        database.create_relationship("person", "library", RelationType.ONE_TO_ONE)
        return database

    def test_related_schema_untouched(self, db):
        """The related collection gains no attribute."""
        assert db.get_collection("person").get_attribute("library") is not None
        assert db.get_collection("library").get_attribute("person") is None

    def test_embedded_create(self, db):
        """An embedded library is created and stays unaware of the person."""
        db.create_document(
            "person",
            {"$id": "person1", "name": "Ann", "library": {"$id": "library1", "name": "Central"}},
        )
        library = db.get_document("library", "library1")
        assert library["name"] == "Central"
        assert "person" not in library

        person = db.get_document("person", "person1")
        assert person["library"].get_id() == "library1"
        assert person["library"]["name"] == "Central"

    def test_create_returns_stored_ids(self, db):
        """create_document returns ids, not expanded documents."""
        created = db.create_document(
            "person",
            {"$id": "person1", "library": {"$id": "library1", "name": "Central"}},
        )
        assert created["library"] == "library1"

    def test_link_by_id(self, db):
        """Existing documents are linked by id."""
        db.create_document("library", {"$id": "library1", "name": "Central"})
        db.create_document("person", {"$id": "person1", "library": "library1"})
        assert db.get_document("person", "person1")["library"].get_id() == "library1"

    def test_link_to_missing_id(self, db):
        """Linking to an unknown id raises NotFound and writes nothing."""
        with pytest.raises(NotFound):
            db.create_document("person", {"$id": "person1", "library": "nowhere"})
        assert db.get_document("person", "person1").is_empty()

    def test_cardinality_enforced(self, db):
        """A single relationship can't take a list."""
        db.create_document("library", {"$id": "library1"})
        with pytest.raises(Structure):
            db.create_document("person", {"$id": "person1", "library": ["library1"]})
        with pytest.raises(Structure):
            db.create_document("person", {"$id": "person1", "library": 42})

    def test_embedded_update(self, db):
        """Embedding an existing id updates that document."""
        db.create_document("person", {"$id": "person1", "library": {"$id": "library1", "name": "Old"}})
        db.update_document("person", "person1", {"library": {"$id": "library1", "name": "New"}})
        assert db.get_document("library", "library1")["name"] == "New"

    def test_unset(self, db):
        """Setting None clears the link."""
        db.create_document("person", {"$id": "person1", "library": {"$id": "library1"}})
        db.update_document("person", "person1", {"library": None})
        assert db.get_document("person", "person1")["library"] is None

    def test_query_by_relationship(self, db):
        """Single relationships are queryable by related id."""
        db.create_document("person", {"$id": "person1", "library": {"$id": "library1"}})
        db.create_document("person", {"$id": "person2", "library": {"$id": "library2"}})
        results = db.find("person", [Query.equal("library", "library2")])
        assert [d.get_id() for d in results] == ["person2"]

    def test_unreadable_related_dropped(self, database):
        """Related documents the roles can't read expand to None."""
        _named(database, "person")
        database.create_collection(
            "diary",
            attributes=[Attribute("text", AttributeType.STRING, size=64)],
            permissions=[Permission.create(Role.any())],
        )
        database.create_relationship("person", "diary", RelationType.ONE_TO_ONE)
        database.create_document(
            "person",
            {"$id": "person1", "diary": {"$id": "diary1", "$permissions": [Permission.read(Role.user("1"))]}},
        )
        assert database.get_document("person", "person1")["diary"] is None
        owner = database.for_roles(["user:1"])
        assert owner.get_document("person", "person1")["diary"].get_id() == "diary1"
        with pytest.raises(AuthorizationError):
            database.get_document("diary", "diary1")


class TestTwoWayOneToOne:
    """Tests for country <-> city, one-to-one, two-way."""

    @pytest.fixture
    def db(self, database):
        """Two-way one-to-one with default keys."""
        _named(database, "country", "city")
        database.create_relationship("country", "city", "oneToOne", two_way=True)
        return database

    def test_both_sides_have_attributes(self, db):
        """Both collections get a relationship attribute."""
        city_side = db.get_collection("city").get_attribute("country")
        assert city_side is not None
        assert city_side.options.related_collection == "country"
        assert city_side.options.two_way_key == "city"

    def test_embedded_both_directions(self, db):
        """Each side exposes the other after one embedded create."""
        db.create_document("country", {"$id": "country1", "name": "France", "city": {"$id": "city1", "name": "Paris"}})

        city = db.get_document("city", "city1")
        assert city["country"].get_id() == "country1"
        assert city["country"]["city"] == "city1"

        country = db.get_document("country", "country1")
        assert country["city"].get_id() == "city1"
        assert country["city"]["country"] == "country1"

    def test_link_from_child_side(self, db):
        """Writing the child side maintains the parent side."""
        db.create_document("country", {"$id": "country1", "name": "Peru"})
        db.create_document("city", {"$id": "city1", "name": "Lima", "country": "country1"})
        assert db.get_document("country", "country1")["city"].get_id() == "city1"

    def test_target_already_linked(self, db):
        """A one-to-one target linked elsewhere raises Duplicate."""
        db.create_document("country", {"$id": "country1", "city": {"$id": "city1"}})
        with pytest.raises(Duplicate):
            db.create_document("country", {"$id": "country2", "city": "city1"})

    def test_relink_clears_old_target(self, db):
        """Replacing the related document unlinks the previous one."""
        db.create_document("country", {"$id": "country1", "city": {"$id": "city1"}})
        db.update_document("country", "country1", {"city": {"$id": "city2"}})
        assert db.get_document("city", "city1")["country"] is None
        assert db.get_document("city", "city2")["country"].get_id() == "country1"


class TestOneToMany:
    """Tests for author -> books, one-to-many, two-way."""

    @pytest.fixture
    def db(self, database):
        """Two-way one-to-many with explicit keys."""
        _named(database, "author", "book")
        database.create_relationship(
            "author", "book", RelationType.ONE_TO_MANY, two_way=True, key="books", two_way_key="author"
        )
        database.create_document(
            "author",
            {"$id": "author1", "books": [{"$id": "book1", "name": "A"}, {"$id": "book2", "name": "B"}]},
        )
        return database

    def test_reverse_type(self, db):
        """The child side is many-to-one."""
        attribute = db.get_collection("book").get_attribute("author")
        assert attribute.options.relation_type == RelationType.MANY_TO_ONE

    def test_children_point_to_owner(self, db):
        """Embedded children reference their owner."""
        book = db.get_document("book", "book1")
        assert book["author"].get_id() == "author1"
        assert book["author"]["books"] == ["book1", "book2"]
        author = db.get_document("author", "author1")
        assert [b.get_id() for b in author["books"]] == ["book1", "book2"]

    def test_move_child_to_new_owner(self, db):
        """Claiming a child removes it from its previous owner."""
        db.create_document("author", {"$id": "author2", "books": ["book2"]})
        assert [b.get_id() for b in db.get_document("author", "author1")["books"]] == ["book1"]
        assert db.get_document("book", "book2")["author"].get_id() == "author2"

    def test_reassign_from_child_side(self, db):
        """Changing the child's owner updates both owners' lists."""
        db.create_document("author", {"$id": "author2"})
        db.update_document("book", "book1", {"author": "author2"})
        assert [b.get_id() for b in db.get_document("author", "author1")["books"]] == ["book2"]
        assert [b.get_id() for b in db.get_document("author", "author2")["books"]] == ["book1"]

    def test_list_required(self, db):
        """A list side rejects a single value."""
        with pytest.raises(Structure):
            db.update_document("author", "author1", {"books": "book1"})

    def test_contains_query(self, db):
        """List relationships support contains."""
        results = db.find("author", [Query.contains("books", "book2")])
        assert [d.get_id() for d in results] == ["author1"]

    def test_duplicates_collapsed(self, db):
        """Repeated ids are stored once."""
        db.update_document("author", "author1", {"books": ["book1", "book1", "book2"]})
        assert db.get_document("author", "author1")["books"][0].get_id() == "book1"
        assert len(db.get_document("author", "author1")["books"]) == 2


class TestManyToMany:
    """Tests for student <-> course, many-to-many, two-way."""

    @pytest.fixture
    def db(self, database):
        """Two-way many-to-many with one course."""
        _named(database, "student", "course")
        database.create_relationship(
            "student", "course", "manyToMany", two_way=True, key="courses", two_way_key="students"
        )
        database.create_document("course", {"$id": "course1", "name": "Math"})
        return database

    def _records(self, db):
        return db.adapter.count(junction_collection_id("student", "courses"))

    def test_junction_created(self, db):
        """The junction collection exists and no attribute is stored."""
        assert db.adapter.collection_exists("_junction_student_courses")
        db.create_document("student", {"$id": "student1", "courses": ["course1"]})
        assert self._records(db) == 1
        stored = db.adapter.get_document("student", "student1")
        assert "courses" not in stored

    def test_expansion_both_sides(self, db):
        """Each side lists the other."""
        db.create_document("student", {"$id": "student1", "courses": ["course1", {"$id": "course2"}]})
        student = db.get_document("student", "student1")
        assert sorted(c.get_id() for c in student["courses"]) == ["course1", "course2"]
        course = db.get_document("course", "course1")
        assert [s.get_id() for s in course["students"]] == ["student1"]
        assert sorted(course["students"][0]["courses"]) == ["course1", "course2"]

    def test_link_twice_is_idempotent(self, db):
        """Linking an existing pair again neither raises nor duplicates."""
        db.create_document("student", {"$id": "student1", "courses": ["course1"]})
        collection = db.get_collection("student")
        attribute = collection.get_attribute("courses")
        student = db.adapter.get_document("student", "student1")
        db.relationships.sync(collection, student, [LinkChange(attribute, added=["course1"])])
        db.relationships.sync(collection, student, [LinkChange(attribute, added=["course1"])])
        db.update_document("student", "student1", {"courses": ["course1"]})
        db.update_document("course", "course1", {"students": ["student1"]})
        assert self._records(db) == 1

    def test_link_from_child_side(self, db):
        """Linking from the course side uses the same record."""
        db.create_document("student", {"$id": "student1"})
        db.update_document("course", "course1", {"students": ["student1"]})
        assert [c.get_id() for c in db.get_document("student", "student1")["courses"]] == ["course1"]
        assert self._records(db) == 1

    def test_unlink(self, db):
        """Removing an id deletes its junction record."""
        db.create_document("student", {"$id": "student1", "courses": ["course1"]})
        db.update_document("student", "student1", {"courses": []})
        assert self._records(db) == 0
        assert db.get_document("course", "course1")["students"] == []

    def test_not_queryable(self, db):
        """Junction-backed relationships can't be filtered."""
        with pytest.raises(Structure):
            db.find("student", [Query.contains("courses", "course1")])


class TestExpansionDepth:
    """Tests for bounded expansion."""

    def test_chain_stops_at_max_depth(self, database):
        """Values past the maximum depth stay as ids."""
        _named(database, "node")
        database.create_relationship("node", "node", RelationType.ONE_TO_ONE, key="next")
        database.create_document("node", {"$id": "n5"})
        for i in range(4, 0, -1):
            database.create_document("node", {"$id": f"n{i}", "next": f"n{i + 1}"})

        n1 = database.get_document("node", "n1")
        assert database.relationships.max_depth == 3
        assert n1["next"]["next"]["next"].get_id() == "n4"
        assert n1["next"]["next"]["next"]["next"] == "n5"

    def test_cycle_terminates(self, database):
        """A cycle stops at the first revisited document."""
        _named(database, "a", "b", "c")
        database.create_relationship("a", "b", RelationType.ONE_TO_ONE)
        database.create_relationship("b", "c", RelationType.ONE_TO_ONE)
        database.create_relationship("c", "a", RelationType.ONE_TO_ONE)
        database.create_document("c", {"$id": "c1"})
        database.create_document("b", {"$id": "b1", "c": "c1"})
        database.create_document("a", {"$id": "a1", "b": "b1"})
        database.update_document("c", "c1", {"a": "a1"})

        a1 = database.get_document("a", "a1")
        assert a1["b"]["c"].get_id() == "c1"
        assert a1["b"]["c"]["a"] == "a1"

    def test_self_reference(self, database):
        """A document related to itself doesn't expand into itself."""
        _named(database, "node")
        database.create_relationship("node", "node", RelationType.ONE_TO_ONE, key="next")
        database.create_document("node", {"$id": "n1"})
        database.update_document("node", "n1", {"next": "n1"})
        assert database.get_document("node", "n1")["next"] == "n1"

    def test_repeated_fetches_are_stable(self, database):
        """Fetching A after B returns the same bounded shape."""
        _named(database, "country", "city")
        database.create_relationship("country", "city", RelationType.ONE_TO_ONE, two_way=True)
        database.create_document("country", {"$id": "country1", "city": {"$id": "city1"}})
        first = database.get_document("country", "country1")
        database.get_document("city", "city1")
        assert database.get_document("country", "country1") == first


class TestRelationshipSchema:
    """Tests for relationship creation and removal."""

    def test_duplicate_keys(self, database):
        """Keys already used on either side raise Duplicate."""
        _named(database, "country", "city")
        database.create_relationship("country", "city", "oneToOne", two_way=True)
        with pytest.raises(Duplicate):
            database.create_relationship("country", "city", "oneToMany")
        with pytest.raises(Duplicate):
            database.create_relationship("city", "country", "oneToOne", key="capital_of", two_way=True, two_way_key="city")

    def test_invalid_arguments(self, database):
        """Unknown types and policies raise Structure; missing collections NotFound."""
        _named(database, "country", "city")
        with pytest.raises(Structure):
            database.create_relationship("country", "city", "oneToFew")
        with pytest.raises(Structure):
            database.create_relationship("country", "city", "oneToOne", on_delete="explode")
        with pytest.raises(NotFound):
            database.create_relationship("country", "planet", "oneToOne")

    def test_relationship_attributes_not_declared_directly(self, database):
        """Relationships can't be passed as plain attributes."""
        with pytest.raises(Structure):
            database.create_collection(
                "person",
                attributes=[{"key": "library", "type": "relationship", "options": {"relatedCollection": "library", "relationType": "oneToOne"}}],
            )

    def test_delete_relationship(self, database):
        """Deleting removes both sides and the junction."""
        _named(database, "student", "course")
        database.create_relationship("student", "course", "manyToMany", two_way=True, key="courses", two_way_key="students")
        database.delete_relationship("student", "courses")
        assert database.get_collection("student").get_attribute("courses") is None
        assert database.get_collection("course").get_attribute("students") is None
        assert not database.adapter.collection_exists("_junction_student_courses")
        with pytest.raises(NotFound):
            database.delete_relationship("student", "courses")

    def test_delete_attribute_removes_relationship(self, database):
        """Dropping a relationship attribute drops its mirror."""
        _named(database, "country", "city")
        database.create_relationship("country", "city", "oneToOne", two_way=True)
        database.delete_attribute("city", "country")
        assert database.get_collection("country").get_attribute("city") is None

    def test_delete_collection_removes_incoming(self, database):
        """Dropping a collection drops relationships that point at it."""
        _named(database, "person", "library")
        database.create_relationship("person", "library", "oneToOne")
        database.delete_collection("library")
        assert database.get_collection("person").get_attribute("library") is None

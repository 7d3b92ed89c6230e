import pytest

from nosqlite import DuplicateKeyError, Index, IndexManager


def _doc(doc_id, **fields):
    return dict(fields, _id=doc_id)


def test_build_indexes_existing_documents():
    manager = IndexManager()
    docs = [_doc("a", email="x"), _doc("b", email="y"), _doc("c"), _doc("d", email="x")]
    index = manager.build("email", docs)
    assert index.ids_for("x") == {"a", "d"}
    assert index.ids_for("y") == {"b"}
    assert len(index.values) == 2


def test_unique_build_over_duplicates_fails_and_registers_nothing():
    manager = IndexManager()
    with pytest.raises(DuplicateKeyError) as info:
        manager.build("email", [_doc("a", email="x"), _doc("b", email="x")], unique=True)
    assert info.value.field == "email"
    assert info.value.value == "x"
    assert manager.info() == {}


def test_validate_unique_respects_exclude_id():
    manager = IndexManager()
    manager.build("email", [_doc("a", email="x")], unique=True)
    with pytest.raises(DuplicateKeyError):
        manager.validate_unique(_doc("b", email="x"))
    manager.validate_unique(_doc("a", email="x"), exclude_id="a")
    manager.validate_unique(_doc("b", email="new"))
    manager.validate_unique(_doc("b"))


def test_find_violation_returns_instead_of_raising():
    manager = IndexManager()
    manager.build("email", [_doc("a", email="x")], unique=True)
    violation = manager.find_violation(_doc("b", email="x"))
    assert isinstance(violation, DuplicateKeyError)
    assert manager.find_violation(_doc("b", email="z")) is None


def test_non_unique_index_never_conflicts():
    manager = IndexManager()
    manager.build("tag", [_doc("a", tag="t")])
    assert manager.find_violation(_doc("b", tag="t")) is None


def test_remove_drops_empty_entries():
    index = Index("email")
    index.add(_doc("a", email="x"))
    index.add(_doc("b", email="x"))
    index.discard(_doc("a", email="x"))
    assert index.ids_for("x") == {"b"}
    index.discard(_doc("b", email="x"))
    assert index.values == {}
    index.discard(_doc("b", email="x"))
    index.discard(_doc("b"))


def test_refresh_moves_id_to_new_value():
    manager = IndexManager()
    index = manager.build("email", [_doc("a", email="x")])
    manager.refresh(_doc("a", email="x"), _doc("a", email="y"))
    assert index.ids_for("x") == set()
    assert index.ids_for("y") == {"a"}
    manager.refresh(_doc("a", email="y"), _doc("a", email="y"))
    assert index.ids_for("y") == {"a"}


def test_unhashable_and_boolean_values_are_indexed():
    index = Index("v", unique=True)
    index.add(_doc("a", v={"k": [1, 2]}))
    index.add(_doc("b", v=True))
    index.add(_doc("c", v=1))
    assert index.ids_for({"k": [1, 2]}) == {"a"}
    assert index.ids_for(True) == {"b"}
    assert index.ids_for(1) == {"c"}
    assert index.conflicts(_doc("d", v={"k": [1, 2]}))
    assert not index.conflicts(_doc("d", v=[1, 2]))


def test_build_replaces_existing_index():
    manager = IndexManager()
    manager.build("email", [], unique=True)
    manager.build("email", [], sparse=True)
    assert manager.info() == {"email": {"unique": False, "sparse": True}}

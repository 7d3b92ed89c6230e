import pytest

from nosqlite import InvalidUpdateError, apply_update


BASE = {"_id": "_1_1_a", "_createdAt": "2020-01-01T00:00:00.000Z",
        "_updatedAt": "2020-01-01T00:00:00.000Z", "name": "A", "age": 30}


def test_set_creates_and_overwrites():
    new = apply_update(BASE, {"$set": {"age": 31, "city": "New York"}})
    assert new["age"] == 31
    assert new["city"] == "New York"
    assert BASE["age"] == 30


def test_unset_removes_fields():
    new = apply_update(BASE, {"$unset": ["age", "nope"]})
    assert "age" not in new
    assert apply_update(BASE, {"$unset": {"age": ""}}).get("age") is None


def test_unset_wins_over_set():
    new = apply_update(BASE, {"$set": {"city": "Boston"}, "$unset": ["city"]})
    assert "city" not in new


def test_inc_defaults_missing_to_zero():
    assert apply_update(BASE, {"$inc": {"score": 5}})["score"] == 5
    assert apply_update(BASE, {"$inc": {"age": -2.5}})["age"] == 27.5


def test_inc_rejects_non_numeric():
    with pytest.raises(InvalidUpdateError):
        apply_update(BASE, {"$inc": {"name": 1}})
    with pytest.raises(InvalidUpdateError):
        apply_update(BASE, {"$inc": {"age": "1"}})


def test_operators_combine():
    new = apply_update(BASE, {"$set": {"city": "X"}, "$unset": ["name"], "$inc": {"age": 1}})
    assert new["city"] == "X"
    assert "name" not in new
    assert new["age"] == 31


def test_replacement_mode_merges():
    new = apply_update(BASE, {"age": 40, "status": "active"})
    assert new["age"] == 40
    assert new["status"] == "active"
    assert new["name"] == "A"


def test_reserved_fields_are_protected():
    new = apply_update(BASE, {"$set": {"_id": "x", "_createdAt": "y"}, "$unset": ["_updatedAt"]})
    assert new["_id"] == BASE["_id"]
    assert new["_createdAt"] == BASE["_createdAt"]
    assert new["_updatedAt"] >= new["_createdAt"]
    assert apply_update(BASE, {"_id": "z"})["_id"] == BASE["_id"]


def test_updated_at_is_refreshed():
    new = apply_update(BASE, {"$set": {"age": 1}})
    assert new["_updatedAt"] > BASE["_updatedAt"]


@pytest.mark.parametrize("update", [
    {"$set": ["age"]},
    {"$inc": 5},
    {"$unset": 5},
    {"$set": {"a": 1}, "$push": {"b": 1}},
    {"$set": {"a": 1}, "plain": 1},
    {"$push": {"b": 1}},
    "not a dict",
])
def test_malformed_updates_raise(update):
    with pytest.raises(InvalidUpdateError):
        apply_update(BASE, update)

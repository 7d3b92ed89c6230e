# nosqlite.py
import os
import re
import copy
import json
import time
import sqlite3
import logging
import binascii
import operator
import functools
from datetime import datetime, timezone
from typing import Optional, List, Tuple, Any, Dict, Set

logger = logging.getLogger(__name__)


# =========================
# Errors
# =========================
class NoSQLiteError(Exception):
    """Base class for NoSQLite errors."""
    pass

class InvalidQueryError(NoSQLiteError):
    """Raised when query syntax is invalid."""
    pass

class InvalidUpdateError(NoSQLiteError):
    """Raised when an update expression is invalid."""
    pass

class InvalidDocumentError(NoSQLiteError):
    """Raised when an inserted value is not a document."""
    pass

class DuplicateKeyError(NoSQLiteError):
    """Raised when a write would put a duplicate value under a unique index."""

    def __init__(self, field: str, value: Any):
        super().__init__(f"Duplicate key error: {field} must be unique (value {value!r} already taken)")
        self.field = field
        self.value = value

class StorageError(NoSQLiteError):
    """Raised when a collection cannot be written to its store."""
    pass


# =========================
# Utils
# =========================
RESERVED_FIELDS = ("_id", "_createdAt", "_updatedAt")


class _Missing:
    """Placeholder for a field a document does not have."""

    def __repr__(self):
        return "<missing>"

MISSING = _Missing()


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 text with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")

def is_operator(key) -> bool:
    return isinstance(key, str) and key.startswith("$")

def is_array(x) -> bool:
    return isinstance(x, (list, tuple))

def is_number(x) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)

def same_value(a, b) -> bool:
    """Strict equality: a missing field equals nothing and booleans never equal numbers."""
    if a is MISSING or b is MISSING:
        return False
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(same_value(a[k], b[k]) for k in a)
    if is_array(a) and is_array(b):
        return len(a) == len(b) and all(same_value(x, y) for x, y in zip(a, b))
    return a == b

def index_key(value):
    """Hashable key under which an indexed value is stored."""
    if isinstance(value, bool):
        return ("bool", value)
    if isinstance(value, (dict, list, tuple)):
        return ("json", json.dumps(value, sort_keys=True, default=str))
    return value

def validate_value(value, error=InvalidDocumentError, path: str = "document"):
    """Reject anything a document cannot hold: null, bool, number, text, mapping or sequence only."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise error(f"Field names must be strings, not {type(key).__name__} (in {path}).")
            validate_value(item, error, f"{path}.{key}")
        return
    if is_array(value):
        for i, item in enumerate(value):
            validate_value(item, error, f"{path}[{i}]")
        return
    raise error(f"Unsupported value of type {type(value).__name__} at {path}.")


# =========================
# Results (pymongo-like)
# =========================
class UpdateResult:
    def __init__(self, matched_count, modified_count, upserted_count=0, upserted_id=None):
        self.matched_count = matched_count
        self.modified_count = modified_count
        self.upserted_count = upserted_count
        self.upserted_id = upserted_id

class DeleteResult:
    def __init__(self, deleted_count):
        self.deleted_count = deleted_count


# =========================
# Ids
# =========================
_ID_PATTERN = re.compile(r"^_(\d+)_(\d+)_")


class IdGenerator:
    """Generates ids of the form ``_<millis>_<counter>_<random>``.

    The counter only ever grows, so two ids from the same generator never
    collide even inside one millisecond; the random suffix covers ids
    produced by other generators over the same data.
    """

    def __init__(self, counter: int = 1):
        self.counter = counter

    def next(self) -> str:
        millis = int(time.time() * 1000)
        suffix = binascii.b2a_hex(os.urandom(5)).decode("ascii")[:9]
        doc_id = f"_{millis}_{self.counter}_{suffix}"
        self.counter += 1
        return doc_id

    def reseed(self, documents: List[dict]):
        """Move the counter past every counter found in ``documents``' ids."""
        highest = None
        for doc in documents:
            match = _ID_PATTERN.match(str(doc.get("_id", "")))
            if match:
                value = int(match.group(2))
                if highest is None or value > highest:
                    highest = value
        self.counter = highest + 1 if highest is not None else len(documents) + 1


# =========================
# Query engine
# =========================
COMPARATORS = {
    "$eq", "$ne", "$gt", "$gte", "$lt", "$lte",
    "$in", "$nin", "$regex", "$options"
}
_ORDERING = {
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
}
_REGEX_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
    "g": 0,
    "u": 0,
}

def validate_query(query: Optional[dict]):
    """Reject malformed queries up front, whether or not any document would reach the bad clause."""
    if query is None:
        return
    if not isinstance(query, dict):
        raise InvalidQueryError(f"Query must be a dict, not {type(query).__name__}.")
    for key, cond in query.items():
        if is_operator(key) or not _is_operator_mapping(cond):
            continue
        for op, arg in cond.items():
            if op not in COMPARATORS:
                raise InvalidQueryError(f"Unsupported operator: {op}")
            if op in ("$in", "$nin"):
                _require_array(op, arg)
            elif op == "$regex":
                compile_regex(arg, cond.get("$options", ""))
        if "$options" in cond and "$regex" not in cond:
            raise InvalidQueryError(f"$options without $regex on field '{key}'.")

def match_query(doc: dict, query: Optional[dict]) -> bool:
    if query is None:
        return True
    if not isinstance(query, dict):
        raise InvalidQueryError(f"Query must be a dict, not {type(query).__name__}.")
    for key, cond in query.items():
        # top-level $ keys are reserved for logical combinators
        if is_operator(key):
            continue
        if not _eval_field(doc.get(key, MISSING), cond):
            return False
    return True

def _is_operator_mapping(cond) -> bool:
    if not isinstance(cond, dict):
        return False
    # an empty mapping is an operator mapping with no constraints
    if not cond:
        return True
    flags = [is_operator(k) for k in cond]
    if all(flags):
        return True
    if any(flags):
        raise InvalidQueryError(f"Cannot mix operators and plain fields in {cond!r}.")
    return False

def _eval_field(value, cond) -> bool:
    if _is_operator_mapping(cond):
        options = cond.get("$options", "")
        for op, arg in cond.items():
            if op == "$options":
                continue
            if not _eval_op(value, op, arg, options):
                return False
        return True
    if is_array(cond):
        return any(same_value(value, item) for item in cond)
    return same_value(value, cond)

def _eval_op(value, op, arg, options="") -> bool:
    if op == "$eq": return same_value(value, arg)
    if op == "$ne": return not same_value(value, arg)
    if op in _ORDERING: return _compare(value, arg, _ORDERING[op])
    if op == "$in": return any(same_value(value, item) for item in _require_array(op, arg))
    if op == "$nin": return not any(same_value(value, item) for item in _require_array(op, arg))
    if op == "$regex":
        pattern = compile_regex(arg, options)
        return isinstance(value, str) and pattern.search(value) is not None
    raise InvalidQueryError(f"Unsupported operator: {op}")

def _compare(value, arg, predicate) -> bool:
    if value is MISSING:
        return False
    try:
        return bool(predicate(value, arg))
    except TypeError:
        # mismatched types (str vs int, None vs anything) never match
        return False

def _require_array(op, arg):
    if not isinstance(arg, (list, tuple, set, frozenset)):
        raise InvalidQueryError(f"{op} requires a list of values.")
    return arg

def compile_regex(pattern, options: str = ""):
    """Compile a ``$regex`` operand with its ``$options`` flags."""
    if not isinstance(options, str):
        raise InvalidQueryError("$options must be a string of flags.")
    flags = 0
    for flag in options:
        if flag not in _REGEX_FLAGS:
            raise InvalidQueryError(f"Unsupported $options flag: {flag!r}")
        flags |= _REGEX_FLAGS[flag]
    if isinstance(pattern, re.Pattern):
        if not flags:
            return pattern
        flags |= pattern.flags
        pattern = pattern.pattern
    if not isinstance(pattern, str):
        raise InvalidQueryError("$regex must be a string or a compiled pattern.")
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        raise InvalidQueryError(f"Invalid $regex {pattern!r}: {e}") from e


# =========================
# Sort / paginate / project
# =========================
def normalize_sort(sort) -> List[Tuple[str, int]]:
    """Accept ``{field: dir}``, ``[(field, dir)]`` or ``[{field: dir}]``."""
    if not sort:
        return []
    if isinstance(sort, dict):
        entries = list(sort.items())
    elif is_array(sort):
        entries = []
        for entry in sort:
            if isinstance(entry, dict):
                entries.extend(entry.items())
            elif is_array(entry) and len(entry) == 2:
                entries.append((entry[0], entry[1]))
            else:
                raise InvalidQueryError(f"Invalid sort entry: {entry!r}")
    else:
        raise InvalidQueryError(f"Invalid sort specification: {sort!r}")
    return [(field, _direction(direction)) for field, direction in entries]

def _direction(direction) -> int:
    if direction == "asc" or (is_number(direction) and direction == 1):
        return 1
    if direction == "desc" or (is_number(direction) and direction == -1):
        return -1
    raise InvalidQueryError(f"Sort direction must be 1, -1, 'asc' or 'desc', not {direction!r}")

def sort_key(value) -> Tuple[int, Any]:
    """Total ordering across value types: missing/null, numbers, text, mappings, sequences, booleans."""
    if value is MISSING or value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (5, value)
    if is_number(value):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    if isinstance(value, dict):
        return (3, json.dumps(value, sort_keys=True, default=str))
    if is_array(value):
        return (4, json.dumps(list(value), sort_keys=True, default=str))
    return (6, repr(value))

def _compare_values(a, b) -> int:
    ka, kb = sort_key(a), sort_key(b)
    return (ka > kb) - (ka < kb)

def sort_docs(docs: List[dict], sort) -> List[dict]:
    keys = normalize_sort(sort)
    if not keys:
        return list(docs)

    def compare(a, b):
        for field, direction in keys:
            result = _compare_values(a.get(field, MISSING), b.get(field, MISSING))
            if result:
                return result * direction
        return 0

    # sorted() is stable, so full ties keep insertion order
    return sorted(docs, key=functools.cmp_to_key(compare))

def paginate(docs: List[dict], skip: int = 0, limit: int = 0) -> List[dict]:
    skip = max(0, skip or 0)
    limit = max(0, limit or 0)
    if skip:
        docs = docs[skip:]
    if limit:
        docs = docs[:limit]
    return docs

def project(doc: dict, projection: Optional[dict]) -> dict:
    if not projection:
        return doc
    out = {}
    for field, include in projection.items():
        if not include:
            continue
        if field == "_id" or field in doc:
            out[field] = doc.get(field)
    return out


# =========================
# Update operators
# =========================
UPDATE_OPERATORS = ("$set", "$unset", "$inc")

def apply_update(doc: dict, update: dict) -> dict:
    """Return the state ``doc`` would have after ``update``.

    ``doc`` itself is not modified. If any of ``$set``, ``$unset`` or
    ``$inc`` is present the update runs in operator mode (set, then unset,
    then inc); otherwise every key is merged onto the document as-is.
    Reserved fields are never written from the update expression, and
    ``_updatedAt`` is refreshed either way.
    """
    validate_update(update)
    new_doc = copy.deepcopy(doc)

    if _is_operator_update(update):
        for field, value in update.get("$set", {}).items():
            if field not in RESERVED_FIELDS:
                new_doc[field] = copy.deepcopy(value)
        for field in _unset_fields(update.get("$unset", [])):
            if field not in RESERVED_FIELDS:
                new_doc.pop(field, None)
        for field, delta in update.get("$inc", {}).items():
            if field in RESERVED_FIELDS:
                continue
            current = new_doc.get(field)
            if current is None:
                current = 0
            elif not is_number(current):
                raise InvalidUpdateError(f"$inc requires numeric field: {field}")
            new_doc[field] = current + delta
    else:
        for field, value in update.items():
            if field not in RESERVED_FIELDS:
                new_doc[field] = copy.deepcopy(value)

    _touch(new_doc)
    return new_doc

def validate_update(update):
    """Reject a malformed update expression before any document is touched."""
    if not isinstance(update, dict):
        raise InvalidUpdateError("Update must be a dict.")
    if _is_operator_update(update):
        for key in update:
            if key not in UPDATE_OPERATORS:
                raise InvalidUpdateError(f"Unsupported update operator: {key}")
        validate_value(_require_mapping("$set", update.get("$set", {})), InvalidUpdateError, "$set")
        _unset_fields(update.get("$unset", []))
        for field, delta in _require_mapping("$inc", update.get("$inc", {})).items():
            if not is_number(delta):
                raise InvalidUpdateError(f"$inc requires a numeric delta for field: {field}")
    else:
        for field in update:
            if is_operator(field):
                raise InvalidUpdateError(f"Unsupported update operator: {field}")
        validate_value(update, InvalidUpdateError, "update")

def _is_operator_update(update: dict) -> bool:
    return any(op in update for op in UPDATE_OPERATORS)

def _require_mapping(op, changes) -> dict:
    if not isinstance(changes, dict):
        raise InvalidUpdateError(f"{op} requires a dict of field values.")
    return changes

def _unset_fields(changes) -> List[str]:
    if isinstance(changes, dict):
        return list(changes.keys())
    if isinstance(changes, (list, tuple, set, frozenset)):
        return list(changes)
    if isinstance(changes, str):
        return [changes]
    raise InvalidUpdateError("$unset requires a list of field names.")

def _touch(doc: dict):
    now = utc_timestamp()
    created = doc.get("_createdAt")
    doc["_updatedAt"] = created if isinstance(created, str) and created > now else now


# =========================
# Indexes
# =========================
class Index:
    """Maps each observed value of one field to the ids of documents holding it."""

    def __init__(self, field: str, unique: bool = False, sparse: bool = False):
        self.field = field
        self.unique = unique
        self.sparse = sparse
        self.values: Dict[Any, Set[str]] = {}

    def add(self, doc: dict):
        if self.field in doc:
            self.values.setdefault(index_key(doc[self.field]), set()).add(doc["_id"])

    def discard(self, doc: dict):
        if self.field not in doc:
            return
        key = index_key(doc[self.field])
        ids = self.values.get(key)
        if ids is None:
            return
        ids.discard(doc["_id"])
        if not ids:
            del self.values[key]

    def conflicts(self, doc: dict, exclude_id: Optional[str] = None) -> bool:
        if not self.unique or self.field not in doc:
            return False
        ids = self.values.get(index_key(doc[self.field]), ())
        return any(doc_id != exclude_id for doc_id in ids)

    def ids_for(self, value) -> Set[str]:
        return set(self.values.get(index_key(value), ()))


class IndexManager:
    """Owns one collection's indexes and keeps them in step with its documents."""

    def __init__(self):
        self.indexes: Dict[str, Index] = {}

    def build(self, field: str, documents: List[dict], unique: bool = False, sparse: bool = False) -> Index:
        index = Index(field, unique=unique, sparse=sparse)
        for doc in documents:
            if index.conflicts(doc):
                raise DuplicateKeyError(field, doc[field])
            index.add(doc)
        # an index on the same field is replaced
        self.indexes[field] = index
        return index

    def find_violation(self, doc: dict, exclude_id: Optional[str] = None) -> Optional[DuplicateKeyError]:
        for index in self.indexes.values():
            if index.conflicts(doc, exclude_id):
                return DuplicateKeyError(index.field, doc[index.field])
        return None

    def validate_unique(self, doc: dict, exclude_id: Optional[str] = None):
        violation = self.find_violation(doc, exclude_id)
        if violation is not None:
            raise violation

    def on_insert(self, doc: dict):
        for index in self.indexes.values():
            index.add(doc)

    def on_remove(self, doc: dict):
        for index in self.indexes.values():
            index.discard(doc)

    def refresh(self, old_doc: dict, new_doc: dict):
        self.on_remove(old_doc)
        self.on_insert(new_doc)

    def clear(self):
        for index in self.indexes.values():
            index.values.clear()

    def info(self) -> Dict[str, dict]:
        return {field: {"unique": index.unique, "sparse": index.sparse}
                for field, index in self.indexes.items()}


# =========================
# Storage
# =========================
class DocumentStore:
    """Loads and saves a collection's whole document set."""

    def load(self) -> List[dict]:
        raise NotImplementedError

    def save(self, documents: List[dict]) -> None:
        raise NotImplementedError

    def drop(self) -> None:
        raise NotImplementedError


def _parse_documents(text: str, source: str) -> List[dict]:
    try:
        data = json.loads(text)
    except ValueError as e:
        logger.warning(f"Error loading {source}: {e}; starting with an empty collection")
        return []
    if not isinstance(data, list) or not all(isinstance(doc, dict) for doc in data):
        logger.warning(f"Error loading {source}: expected a list of documents; starting with an empty collection")
        return []
    return data


class MemoryStore(DocumentStore):
    """Keeps the last saved document set in memory."""

    def __init__(self, documents: Optional[List[dict]] = None):
        self.documents = copy.deepcopy(list(documents or []))

    def load(self) -> List[dict]:
        return copy.deepcopy(self.documents)

    def save(self, documents: List[dict]) -> None:
        self.documents = copy.deepcopy(documents)

    def drop(self) -> None:
        self.documents = []


class JsonFileStore(DocumentStore):
    """One JSON array per collection, rewritten in full on every save."""

    def __init__(self, path: str, indent: Optional[int] = 2):
        self.path = path
        self.indent = indent

    def load(self) -> List[dict]:
        if not os.path.exists(self.path):
            logger.debug(f"No file at {self.path}; starting with an empty collection")
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                text = f.read()
        except (OSError, ValueError) as e:
            logger.warning(f"Error loading {self.path}: {e}; starting with an empty collection")
            return []
        return _parse_documents(text, self.path)

    def save(self, documents: List[dict]) -> None:
        try:
            # encode first so an unserializable value never truncates the file
            payload = json.dumps(documents, indent=self.indent)
            with open(self.path, "w", encoding="utf-8") as f:
                f.write(payload)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Error saving {self.path}: {e}")
            raise StorageError(f"Could not save {self.path}: {e}") from e

    def drop(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)


CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS collections (
    name TEXT PRIMARY KEY,
    data TEXT NOT NULL
);
"""

class SQLiteStore(DocumentStore):
    """One row per collection in a shared SQLite database."""

    def __init__(self, conn: sqlite3.Connection, name: str):
        self.conn = conn
        self.name = name
        self.conn.execute(CREATE_TABLE_SQL)
        self.conn.commit()

    def load(self) -> List[dict]:
        source = f"collection '{self.name}'"
        try:
            row = self.conn.execute("SELECT data FROM collections WHERE name = ?", (self.name,)).fetchone()
        except sqlite3.Error as e:
            logger.warning(f"Error loading {source}: {e}; starting with an empty collection")
            return []
        if row is None:
            logger.debug(f"No stored data for {source}; starting with an empty collection")
            return []
        return _parse_documents(row[0], source)

    def save(self, documents: List[dict]) -> None:
        try:
            payload = json.dumps(documents)
            self.conn.execute("INSERT OR REPLACE INTO collections (name, data) VALUES (?, ?)", (self.name, payload))
            self.conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"Error saving collection '{self.name}': {e}")
            raise StorageError(f"Could not save collection '{self.name}': {e}") from e

    def drop(self) -> None:
        self.conn.execute("DELETE FROM collections WHERE name = ?", (self.name,))
        self.conn.commit()


# =========================
# Collection
# =========================
class Collection:
    """An ordered set of documents plus its indexes, persisted through a DocumentStore."""

    def __init__(self, name: str, store: Optional[DocumentStore] = None):
        self.name = name
        self.store = store if store is not None else MemoryStore()
        self.documents: List[dict] = []
        self.ids = IdGenerator()
        self.indexes = IndexManager()
        self._load()

    def __len__(self):
        return len(self.documents)

    def __repr__(self):
        return f"Collection({self.name!r})"

    # ----- Insert -----
    def insert(self, data):
        """Insert one document or a list of documents.

        Returns a copy of the stored document (or a list of copies in input
        order) carrying ``_id``, ``_createdAt`` and ``_updatedAt``. On a
        duplicate key the documents accepted earlier in the same call stay
        inserted.
        """
        single = isinstance(data, dict)
        if not single and not is_array(data):
            raise InvalidDocumentError("Insert expects a dict or a list of dicts.")
        documents = [data] if single else list(data)
        for doc in documents:
            if not isinstance(doc, dict):
                raise InvalidDocumentError(f"Document must be a dict, not {type(doc).__name__}.")
            validate_value(doc)

        inserted = []
        try:
            for doc in documents:
                inserted.append(self._insert_document(doc))
        except DuplicateKeyError:
            if inserted:
                self._save()
            raise
        self._save()
        logger.debug(f"Inserted {len(inserted)} document(s) into '{self.name}'")

        results = [copy.deepcopy(doc) for doc in inserted]
        return results[0] if single else results

    def _insert_document(self, doc: dict) -> dict:
        now = utc_timestamp()
        document = dict(copy.deepcopy(doc), _id=self.ids.next(), _createdAt=now, _updatedAt=now)
        self.indexes.validate_unique(document)
        self.documents.append(document)
        self.indexes.on_insert(document)
        return document

    # ----- Find -----
    def find(self, query: Optional[dict] = None, sort=None, skip: int = 0,
             limit: int = 0, projection: Optional[dict] = None) -> List[dict]:
        validate_query(query)
        results = [doc for doc in self.documents if match_query(doc, query)]
        results = sort_docs(results, sort)
        results = paginate(results, skip, limit)
        return [project(copy.deepcopy(doc), projection) for doc in results]

    def find_one(self, query: Optional[dict] = None, sort=None, skip: int = 0,
                 projection: Optional[dict] = None) -> Optional[dict]:
        results = self.find(query, sort=sort, skip=skip, limit=1, projection=projection)
        return results[0] if results else None

    def count(self, query: Optional[dict] = None) -> int:
        validate_query(query)
        return sum(1 for doc in self.documents if match_query(doc, query))

    # ----- Update -----
    def update(self, query: dict, update: dict, multi: bool = True, upsert: bool = False) -> UpdateResult:
        validate_query(query)
        validate_update(update)
        matches = [(pos, doc) for pos, doc in enumerate(self.documents) if match_query(doc, query)]

        if not matches and upsert:
            return self._upsert(query, update)
        if not multi:
            matches = matches[:1]

        modified = 0
        try:
            for pos, doc in matches:
                self._update_document(pos, doc, update)
                modified += 1
        except NoSQLiteError:
            if modified:
                self._save()
            raise
        if modified:
            self._save()
        logger.debug(f"Updated {modified} document(s) in '{self.name}'")
        return UpdateResult(matched_count=len(matches), modified_count=modified)

    def _update_document(self, pos: int, doc: dict, update: dict):
        new_doc = apply_update(doc, update)
        self.indexes.validate_unique(new_doc, exclude_id=doc["_id"])
        self.documents[pos] = new_doc
        self.indexes.refresh(doc, new_doc)

    def _upsert(self, query: Optional[dict], update: dict) -> UpdateResult:
        seed = {
            field: copy.deepcopy(value)
            for field, value in (query or {}).items()
            if not is_operator(field) and not is_array(value) and not _is_operator_mapping(value)
        }
        validate_value(seed)
        document = self._insert_document(apply_update(seed, update))
        self._save()
        logger.debug(f"Upserted document {document['_id']} into '{self.name}'")
        return UpdateResult(matched_count=0, modified_count=1, upserted_count=1, upserted_id=document["_id"])

    # ----- Delete -----
    def delete(self, query: dict, multi: bool = True) -> DeleteResult:
        validate_query(query)
        matches = [doc for doc in self.documents if match_query(doc, query)]
        if not multi:
            matches = matches[:1]
        if not matches:
            return DeleteResult(0)

        doomed = {id(doc) for doc in matches}
        for doc in matches:
            self.indexes.on_remove(doc)
        self.documents = [doc for doc in self.documents if id(doc) not in doomed]
        self._save()
        logger.debug(f"Deleted {len(matches)} document(s) from '{self.name}'")
        return DeleteResult(len(matches))

    def remove(self) -> bool:
        """Delete every document; indexes stay defined but become empty."""
        self.documents = []
        self.indexes.clear()
        self._save()
        return True

    # ----- Indexes -----
    def create_index(self, field: str, unique: bool = False, sparse: bool = False) -> str:
        index = self.indexes.build(field, self.documents, unique=unique, sparse=sparse)
        logger.debug(f"Built {'unique ' if unique else ''}index on '{self.name}.{field}' "
                     f"({len(index.values)} distinct values)")
        return field

    def create_unique_index(self, field: str, sparse: bool = False) -> str:
        return self.create_index(field, unique=True, sparse=sparse)

    def index_information(self) -> Dict[str, dict]:
        return self.indexes.info()

    # ----- Persistence -----
    def drop(self):
        self.store.drop()
        self.documents = []
        self.indexes = IndexManager()

    def _load(self):
        self.documents = self.store.load()
        self.ids.reseed(self.documents)
        logger.debug(f"Loaded collection '{self.name}': {len(self.documents)} document(s), "
                     f"id counter at {self.ids.counter}")

    def _save(self):
        self.store.save(self.documents)
        logger.debug(f"Saved collection '{self.name}' ({len(self.documents)} document(s))")


# =========================
# Database
# =========================
STORAGE_KINDS = ("json", "sqlite")
SQLITE_FILENAME = "nosqlite.db"

class NoSQLite:
    """
    Top-level database rooted at one directory.
    Usage:
        db = NoSQLite("./data")
        users = db["users"]
        users.insert({"name": "Ada"})
    """
    def __init__(self, db_path: str = "./nosqlite_db", storage: str = "json"):
        if storage not in STORAGE_KINDS:
            raise ValueError(f"storage must be one of {STORAGE_KINDS}, not {storage!r}")
        self.db_path = os.path.abspath(db_path)
        self.storage = storage
        os.makedirs(self.db_path, exist_ok=True)
        self.collections: Dict[str, Collection] = {}
        self.conn = None
        if storage == "sqlite":
            self.conn = sqlite3.connect(os.path.join(self.db_path, SQLITE_FILENAME),
                                        isolation_level=None, check_same_thread=False)
        logger.info(f"Opened database at {self.db_path} ({storage} storage)")

    def __getitem__(self, name: str) -> Collection:
        return self.collection(name)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def collection(self, name: str) -> Collection:
        if name not in self.collections:
            self.collections[name] = Collection(name, self._store_for(name))
        return self.collections[name]

    def drop_collection(self, name: str) -> bool:
        coll = self.collections.pop(name, None)
        if coll is not None:
            coll.drop()
        else:
            self._store_for(name).drop()
        logger.info(f"Dropped collection '{name}'")
        return True

    def list_collection_names(self) -> List[str]:
        if self.storage == "sqlite":
            self.conn.execute(CREATE_TABLE_SQL)
            return [row[0] for row in self.conn.execute("SELECT name FROM collections ORDER BY name")]
        return sorted(os.path.splitext(f)[0] for f in os.listdir(self.db_path) if f.endswith(".json"))

    def create_index(self, collection_name: str, field: str, unique: bool = False, sparse: bool = False) -> str:
        return self.collection(collection_name).create_index(field, unique=unique, sparse=sparse)

    def close(self):
        for coll in self.collections.values():
            coll._save()
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def _store_for(self, name: str) -> DocumentStore:
        if not isinstance(name, str) or not name or name.startswith(".") or os.sep in name or "/" in name:
            raise ValueError(f"Invalid collection name: {name!r}")
        if self.storage == "sqlite":
            return SQLiteStore(self.conn, name)
        return JsonFileStore(os.path.join(self.db_path, f"{name}.json"))

"""Read-only document store for clubs, events, tickets, menu items, orders and users.

Documents are loaded from a JSON seed in the data directory. Queries use a
subset of the Mongo filter language so that plans proposed by the language
model and plans built by the rule table run through the same evaluator.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from pathlib import Path
from shutil import copy2
from typing import Any

from .settings import SEED_DIR, settings

logger = logging.getLogger(__name__)

DATA_DIR = settings.data_dir
SEED_FILENAME = "nightlife.json"

COLLECTIONS = ("clubs", "events", "tickets", "menuItems", "orders", "users")

MODEL_COLLECTIONS: dict[str, str] = {
    "Club": "clubs",
    "Event": "events",
    "Ticket": "tickets",
    "MenuItem": "menuItems",
    "Order": "orders",
    "User": "users",
}

# (collection, field) -> collection the stored ids point at
REFERENCES: dict[tuple[str, str], str] = {
    ("clubs", "events"): "events",
    ("events", "tickets"): "tickets",
    ("events", "menuItems"): "menuItems",
    ("orders", "event"): "events",
    ("orders", "club"): "clubs",
    ("orders", "ticket"): "tickets",
    ("users", "orders"): "orders",
}

COMPARISON_OPERATORS = frozenset({"$eq", "$ne", "$gt", "$gte", "$lt", "$lte", "$in", "$nin"})
FIELD_OPERATORS = COMPARISON_OPERATORS | {"$exists", "$regex", "$options", "$size", "$not"}
LOGICAL_OPERATORS = frozenset({"$or", "$and", "$nor"})
SUPPORTED_OPERATORS = FIELD_OPERATORS | LOGICAL_OPERATORS

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}
_MISSING = object()


class UnsupportedQuery(ValueError):
    """Raised when a filter uses an operator or shape the store does not evaluate."""


def _bootstrap_file(filename: str, fallback: str | None = None) -> None:
    target = DATA_DIR / filename
    if target.exists():
        return
    seed_file = SEED_DIR / filename
    if seed_file.exists():
        copy2(seed_file, target)
        return
    if fallback is not None:
        target.write_text(fallback, encoding="utf-8")
    else:
        target.touch()


def collection_for(model: str) -> str:
    try:
        return MODEL_COLLECTIONS[model]
    except KeyError as exc:
        raise UnsupportedQuery(f"unknown model {model!r}") from exc


def _values_at(document: Any, parts: Sequence[str]) -> list[Any]:
    """Collect every value reachable at a dotted path, descending into arrays."""
    if not parts:
        return [document]
    if isinstance(document, list):
        found: list[Any] = []
        for item in document:
            found.extend(_values_at(item, parts))
        return found
    if not isinstance(document, Mapping):
        return []
    head, rest = parts[0], parts[1:]
    if head not in document:
        return []
    return _values_at(document[head], rest)


def _coerce_pair(left: Any, right: Any) -> tuple[Any, Any]:
    if isinstance(right, (date, datetime)) and isinstance(left, str):
        right = right.isoformat()
    elif isinstance(left, (date, datetime)) and isinstance(right, str):
        left = left.isoformat()
    return left, right


def _compare(op: str, value: Any, operand: Any) -> bool:
    if op == "$eq":
        if isinstance(value, list):
            return value == operand or operand in value
        return value == operand
    if op == "$ne":
        return not _compare("$eq", value, operand)
    if op == "$in":
        if not isinstance(operand, list):
            raise UnsupportedQuery("$in expects a list")
        return any(_compare("$eq", value, candidate) for candidate in operand)
    if op == "$nin":
        if not isinstance(operand, list):
            raise UnsupportedQuery("$nin expects a list")
        return not any(_compare("$eq", value, candidate) for candidate in operand)
    if value is None or value is _MISSING:
        return False
    if isinstance(value, list):
        return any(_compare(op, item, operand) for item in value)
    left, right = _coerce_pair(value, operand)
    try:
        if op == "$gt":
            return left > right
        if op == "$gte":
            return left >= right
        if op == "$lt":
            return left < right
        if op == "$lte":
            return left <= right
    except TypeError:
        return False
    raise UnsupportedQuery(f"unsupported operator {op}")


def _compile_regex(pattern: Any, options: Any = "") -> re.Pattern[str]:
    if isinstance(pattern, re.Pattern):
        return pattern
    if not isinstance(pattern, str):
        raise UnsupportedQuery("$regex expects a string")
    flags = 0
    for flag in str(options or ""):
        if flag not in _REGEX_FLAGS:
            raise UnsupportedQuery(f"unsupported regex option {flag!r}")
        flags |= _REGEX_FLAGS[flag]
    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        raise UnsupportedQuery(f"invalid regex {pattern!r}: {exc}") from exc


def _regex_matches(value: Any, regex: re.Pattern[str]) -> bool:
    if isinstance(value, list):
        return any(_regex_matches(item, regex) for item in value)
    return isinstance(value, str) and regex.search(value) is not None


def _is_operator_dict(condition: Any) -> bool:
    return isinstance(condition, Mapping) and bool(condition) and all(
        isinstance(key, str) and key.startswith("$") for key in condition
    )


def _single_value(values: list[Any]) -> Any:
    if not values:
        return _MISSING
    if len(values) == 1:
        return values[0]
    return values


def _field_matches(document: Mapping[str, Any], path: str, condition: Any) -> bool:
    values = _values_at(document, path.split("."))
    if not _is_operator_dict(condition):
        if isinstance(condition, re.Pattern):
            return any(_regex_matches(value, condition) for value in values)
        if condition is None:
            return not values or any(value is None for value in values)
        return any(_compare("$eq", value, condition) for value in values)
    return _operators_match(values, condition)


def _operators_match(values: list[Any], condition: Mapping[str, Any]) -> bool:
    unknown = set(condition) - FIELD_OPERATORS
    if unknown:
        raise UnsupportedQuery(f"unsupported operator(s): {', '.join(sorted(unknown))}")
    for op, operand in condition.items():
        if op == "$options":
            continue
        if op == "$regex":
            regex = _compile_regex(operand, condition.get("$options", ""))
            if not any(_regex_matches(value, regex) for value in values):
                return False
        elif op == "$exists":
            if bool(values) != bool(operand):
                return False
        elif op == "$size":
            if not isinstance(operand, int):
                raise UnsupportedQuery("$size expects an integer")
            if not any(isinstance(value, list) and len(value) == operand for value in values):
                return False
        elif op == "$not":
            if isinstance(operand, Mapping):
                if _operators_match(values, operand):
                    return False
            elif isinstance(operand, (str, re.Pattern)):
                regex = _compile_regex(operand)
                if any(_regex_matches(value, regex) for value in values):
                    return False
            else:
                raise UnsupportedQuery("$not expects an operator object or regex")
        elif op in {"$ne", "$nin"}:
            if not _compare(op, _single_value(values), operand):
                return False
        elif not any(_compare(op, value, operand) for value in values):
            return False
    return True


def matches(document: Mapping[str, Any], query: Mapping[str, Any] | None) -> bool:
    """Evaluate a Mongo-style filter against one document."""
    if not query:
        return True
    if not isinstance(query, Mapping):
        raise UnsupportedQuery("filter must be an object")
    for key, condition in query.items():
        if key in LOGICAL_OPERATORS:
            if not isinstance(condition, list) or not condition:
                raise UnsupportedQuery(f"{key} expects a non-empty list")
            results = (matches(document, clause) for clause in condition)
            if key == "$or" and not any(results):
                return False
            if key == "$and" and not all(results):
                return False
            if key == "$nor" and any(results):
                return False
        elif key.startswith("$"):
            raise UnsupportedQuery(f"unsupported operator {key}")
        elif not _field_matches(document, key, condition):
            return False
    return True


def _projection_fields(projection: str | Iterable[str] | None) -> set[str] | None:
    if projection is None:
        return None
    if isinstance(projection, str):
        fields = projection.split()
    else:
        fields = list(projection)
    return {field for field in fields if field} | {"_id"}


def _apply_projection(document: dict[str, Any], fields: set[str] | None) -> dict[str, Any]:
    if fields is None:
        return document
    return {key: value for key, value in document.items() if key in fields}


def _sort_key(field: str):
    def key(document: Mapping[str, Any]) -> tuple[int, Any]:
        values = _values_at(document, field.split("."))
        value = values[0] if values else None
        if value is None:
            return (1, "")
        if isinstance(value, bool):
            return (0, int(value))
        return (0, value)

    return key


def _sort(documents: list[dict[str, Any]], sort: Sequence[tuple[str, int]] | None) -> None:
    # stable sort applied from the least significant key up
    for field, direction in reversed(list(sort or [])):
        if direction == -1:
            present = [doc for doc in documents if _values_at(doc, field.split("."))]
            absent = [doc for doc in documents if not _values_at(doc, field.split("."))]
            present.sort(key=_sort_key(field), reverse=True)
            documents[:] = present + absent
        else:
            documents.sort(key=_sort_key(field))


class DocumentStore:
    """In-memory collections with Mongo-style find, populate and projection."""

    def __init__(self, documents: Mapping[str, Iterable[Mapping[str, Any]]] | None = None) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {
            name: {} for name in COLLECTIONS
        }
        for name, records in (documents or {}).items():
            if name not in self._collections:
                logger.warning("Ignoring unknown collection %s in seed data", name)
                continue
            for record in records:
                doc_id = str(record.get("_id") or "")
                if not doc_id:
                    raise ValueError(f"{name} record without _id: {record!r}")
                self._collections[name][doc_id] = dict(record)

    @classmethod
    def from_file(cls, path: Path) -> DocumentStore:
        if not path.exists():
            logger.warning("Seed file %s missing; starting with empty collections", path)
            return cls()
        raw = path.read_text(encoding="utf-8").strip()
        if not raw:
            return cls()
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"Invalid seed data: {path}") from exc
        if not isinstance(payload, dict):
            raise RuntimeError(f"Seed data must be an object keyed by collection: {path}")
        store = cls(payload)
        logger.info(
            "Loaded seed data from %s (%s)",
            path,
            ", ".join(f"{name}={store.count(name)}" for name in COLLECTIONS),
        )
        return store

    def count(self, collection: str) -> int:
        return len(self._collection(collection))

    def _collection(self, collection: str) -> dict[str, dict[str, Any]]:
        try:
            return self._collections[collection]
        except KeyError as exc:
            raise UnsupportedQuery(f"unknown collection {collection!r}") from exc

    def _populate(
        self, collection: str, document: dict[str, Any], spec: str | Mapping[str, Any]
    ) -> None:
        if isinstance(spec, str):
            spec = {"path": spec}
        if not isinstance(spec, Mapping) or not isinstance(spec.get("path"), str):
            raise UnsupportedQuery(f"invalid populate spec {spec!r}")
        path = spec["path"]
        target = REFERENCES.get((collection, path))
        if target is None:
            raise UnsupportedQuery(f"{collection}.{path} is not a reference")
        if path not in document:
            return
        match = spec.get("match")
        fields = _projection_fields(spec.get("select"))
        nested = spec.get("populate") or []
        if isinstance(nested, (str, Mapping)):
            nested = [nested]

        def resolve(ref: Any) -> dict[str, Any] | None:
            if isinstance(ref, Mapping):
                ref = ref.get("_id")
            found = self._collection(target).get(str(ref))
            if found is None or not matches(found, match):
                return None
            resolved = copy.deepcopy(found)
            for child in nested:
                self._populate(target, resolved, child)
            return _apply_projection(resolved, fields)

        value = document[path]
        if isinstance(value, list):
            document[path] = [doc for doc in (resolve(ref) for ref in value) if doc is not None]
        else:
            document[path] = resolve(value) if value is not None else None

    async def find(
        self,
        collection: str,
        query: Mapping[str, Any] | None = None,
        *,
        projection: str | Iterable[str] | None = None,
        populate: Sequence[str | Mapping[str, Any]] | None = None,
        sort: Sequence[tuple[str, int]] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return deep copies of matching documents; callers may mutate them freely."""
        records = self._collection(collection)
        found = [copy.deepcopy(doc) for doc in records.values() if matches(doc, query)]
        _sort(found, sort)
        if limit is not None:
            found = found[: max(0, int(limit))]
        fields = _projection_fields(projection)
        results = []
        for doc in found:
            doc = _apply_projection(doc, fields)
            for spec in populate or []:
                self._populate(collection, doc, spec)
            results.append(doc)
        return results

    async def find_one(
        self,
        collection: str,
        query: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any] | None:
        kwargs["limit"] = 1
        found = await self.find(collection, query, **kwargs)
        return found[0] if found else None

    async def get(
        self,
        collection: str,
        doc_id: str,
        *,
        populate: Sequence[str | Mapping[str, Any]] | None = None,
    ) -> dict[str, Any] | None:
        return await self.find_one(collection, {"_id": str(doc_id)}, populate=populate)


_bootstrap_file(SEED_FILENAME, '{"clubs": [], "events": []}\n')
STORE = DocumentStore.from_file(DATA_DIR / SEED_FILENAME)


__all__ = [
    "COLLECTIONS",
    "DocumentStore",
    "MODEL_COLLECTIONS",
    "STORE",
    "SUPPORTED_OPERATORS",
    "UnsupportedQuery",
    "collection_for",
    "matches",
]

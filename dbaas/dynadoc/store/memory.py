"""
In-memory store implementation for testing.

This module provides an in-process StoreClient that speaks the same wire
protocol as DynamoDB for:
- Unit tests
- Integration tests of models
- Local development without DynamoDB Local

It evaluates the subset of the DynamoDB expression grammar the query
builder produces (comparisons, AND/OR/NOT, IN, contains, begins_with,
attribute_exists, attribute_not_exists; SET and REMOVE updates) and
enforces the wire limits models have to respect.

Invariants:
    - All data is lost on process exit
    - Batch limits match DynamoDB (100 keys per get, 25 items per write)
    - Scans return items in insertion order and paginate by page_size
    - Errors use the same codes as DynamoDB

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with StoreClient protocol
    - When the query builder emits new syntax, teach the evaluator here
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import re
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from .base import (
    CONDITIONAL_CHECK_FAILED,
    RESOURCE_IN_USE,
    RESOURCE_NOT_FOUND,
    VALIDATION_ERROR,
    Response,
    StoreConnectionError,
    StoreError,
)

logger = logging.getLogger(__name__)

BATCH_GET_LIMIT = 100
BATCH_WRITE_LIMIT = 25

Item = Dict[str, Any]
Predicate = Callable[[Item], bool]


@dataclass
class InMemoryTable:
    """In-memory table storage.

    Scan order is the order in which keys were first written. A key keeps
    its position after deletion, so a deleted ExclusiveStartKey still
    resumes at the right place.
    """
    description: Dict[str, Any]
    items: Dict[str, Item] = field(default_factory=dict)
    positions: Dict[str, int] = field(default_factory=dict)

    @property
    def key_names(self) -> List[str]:
        return [k["AttributeName"] for k in self.description["KeySchema"]]

    def write(self, key: str, item: Item) -> None:
        self.positions.setdefault(key, len(self.positions))
        self.items[key] = copy.deepcopy(item)

    def ordered(self) -> List[Tuple[str, Item]]:
        return sorted(self.items.items(), key=lambda entry: self.positions[entry[0]])

    def index(self, name: str) -> Optional[Dict[str, Any]]:
        for index in self.description.get("GlobalSecondaryIndexes", []):
            if index["IndexName"] == name:
                return index
        return None


def _validation(message: str, operation: str) -> StoreError:
    return StoreError(message, code=VALIDATION_ERROR, operation=operation)


# ---------------------------------------------------------------------------
# Expression evaluation
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"\s*(?:"
    r"(?P<op><>|<=|>=|=|<|>)"
    r"|(?P<lparen>\()"
    r"|(?P<rparen>\))"
    r"|(?P<comma>,)"
    r"|(?P<value>:[A-Za-z0-9_]+)"
    r"|(?P<path>#?[A-Za-z0-9_]+(?:\[\d+\])*(?:\.#?[A-Za-z0-9_]+(?:\[\d+\])*)*)"
    r")"
)

_KEYWORDS = ("AND", "OR", "NOT", "IN", "BETWEEN")
_FUNCTIONS = ("contains", "begins_with", "attribute_exists", "attribute_not_exists", "size")
_MISSING = object()


def _tokenize(expression: str, operation: str) -> List[Tuple[str, str]]:
    tokens = []
    pos = 0
    expression = expression.rstrip()
    while pos < len(expression):
        match = _TOKEN_RE.match(expression, pos)
        if not match or match.end() == pos:
            raise _validation(f"Invalid expression near: {expression[pos:]!r}", operation)
        kind = match.lastgroup
        text = match.group(kind)
        if kind == "path" and text in _KEYWORDS:
            kind = "keyword"
        tokens.append((kind, text))
        pos = match.end()
    return tokens


class _ExpressionContext:
    """Resolves #name and :value placeholders for one request."""

    def __init__(
        self,
        names: Optional[Dict[str, str]],
        values: Optional[Dict[str, Any]],
        operation: str,
    ) -> None:
        self.names = names or {}
        self.values = values or {}
        self.operation = operation

    def path(self, text: str) -> List[Any]:
        segments: List[Any] = []
        for part in text.split("."):
            match = re.match(r"(#?[A-Za-z0-9_]+)((?:\[\d+\])*)$", part)
            name = match.group(1)
            if name.startswith("#"):
                if name not in self.names:
                    raise _validation(
                        f"An expression attribute name used in the document path is not defined: {name}",
                        self.operation,
                    )
                name = self.names[name]
            segments.append(name)
            segments.extend(int(i) for i in re.findall(r"\[(\d+)\]", match.group(2)))
        return segments

    def value(self, text: str) -> Any:
        if text not in self.values:
            raise _validation(
                f"An expression attribute value used in expression is not defined: {text}",
                self.operation,
            )
        return self.values[text]


def _resolve(item: Item, path: List[Any]) -> Any:
    """Get the wire value at a document path, or _MISSING."""
    current: Any = {"M": item}
    for segment in path:
        if isinstance(segment, int):
            elements = current.get("L")
            if elements is None or segment >= len(elements):
                return _MISSING
            current = elements[segment]
        else:
            members = current.get("M")
            if members is None or segment not in members:
                return _MISSING
            current = members[segment]
    return current


def _wire_key(wire_value: Dict[str, Any]) -> Tuple[str, Any]:
    """Comparable (type tag, payload) of a wire value.

    Numbers compare by value and sets ignore order.
    """
    tag, raw = next(iter(wire_value.items()))
    if tag == "N":
        return tag, Decimal(raw)
    if tag == "NS":
        return tag, frozenset(Decimal(v) for v in raw)
    if tag in ("SS", "BS"):
        return tag, frozenset(raw)
    if tag == "L":
        return tag, tuple(_wire_key(v) for v in raw)
    if tag == "M":
        return tag, frozenset((k, _wire_key(v)) for k, v in raw.items())
    return tag, raw


def _compare(op: str, left: Any, right: Any) -> bool:
    if left is _MISSING or right is _MISSING:
        return op == "<>"
    left_tag, left_key = _wire_key(left)
    right_tag, right_key = _wire_key(right)
    if op == "=":
        return left_tag == right_tag and left_key == right_key
    if op == "<>":
        return left_tag != right_tag or left_key != right_key
    # Ordering only exists between two strings or two numbers
    if left_tag != right_tag or left_tag not in ("S", "N"):
        return False
    if op == "<":
        return left_key < right_key
    if op == "<=":
        return left_key <= right_key
    if op == ">":
        return left_key > right_key
    if op == ">=":
        return left_key >= right_key
    return False


class _ConditionParser:
    """Recursive-descent parser turning a condition into a predicate."""

    def __init__(self, expression: str, context: _ExpressionContext) -> None:
        self.tokens = _tokenize(expression, context.operation)
        self.pos = 0
        self.context = context

    def parse(self) -> Predicate:
        predicate = self._or()
        if self.pos != len(self.tokens):
            raise self._error()
        return predicate

    def _error(self) -> StoreError:
        rest = " ".join(t for _, t in self.tokens[self.pos:])
        return _validation(f"Invalid condition expression near: {rest!r}", self.context.operation)

    def _peek(self) -> Tuple[Optional[str], Optional[str]]:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None, None

    def _take(self, kind: str, text: Optional[str] = None) -> str:
        token_kind, token_text = self._peek()
        if token_kind != kind or (text is not None and token_text != text):
            raise self._error()
        self.pos += 1
        return token_text

    def _or(self) -> Predicate:
        parts = [self._and()]
        while self._peek() == ("keyword", "OR"):
            self.pos += 1
            parts.append(self._and())
        if len(parts) == 1:
            return parts[0]
        return lambda item: any(p(item) for p in parts)

    def _and(self) -> Predicate:
        parts = [self._not()]
        while self._peek() == ("keyword", "AND"):
            self.pos += 1
            parts.append(self._not())
        if len(parts) == 1:
            return parts[0]
        return lambda item: all(p(item) for p in parts)

    def _not(self) -> Predicate:
        if self._peek() == ("keyword", "NOT"):
            self.pos += 1
            inner = self._not()
            return lambda item: not inner(item)
        return self._primary()

    def _primary(self) -> Predicate:
        kind, text = self._peek()
        if kind == "lparen":
            self.pos += 1
            inner = self._or()
            self._take("rparen")
            return inner
        if kind == "path" and text in _FUNCTIONS and self._lookahead_is_call():
            return self._function()

        left = self._operand()
        kind, text = self._peek()
        if kind == "op":
            self.pos += 1
            right = self._operand()
            return lambda item: _compare(text, left(item), right(item))
        if (kind, text) == ("keyword", "IN"):
            self.pos += 1
            self._take("lparen")
            options = [self._operand()]
            while self._peek()[0] == "comma":
                self.pos += 1
                options.append(self._operand())
            self._take("rparen")
            return lambda item: any(_compare("=", left(item), o(item)) for o in options)
        if (kind, text) == ("keyword", "BETWEEN"):
            self.pos += 1
            low = self._operand()
            self._take("keyword", "AND")
            high = self._operand()
            return lambda item: _compare(">=", left(item), low(item)) and _compare(
                "<=", left(item), high(item)
            )
        raise self._error()

    def _lookahead_is_call(self) -> bool:
        return self.pos + 1 < len(self.tokens) and self.tokens[self.pos + 1][0] == "lparen"

    def _operand(self) -> Callable[[Item], Any]:
        kind, text = self._peek()
        if kind == "value":
            self.pos += 1
            value = self.context.value(text)
            return lambda item: value
        if kind == "path":
            self.pos += 1
            path = self.context.path(text)
            return lambda item: _resolve(item, path)
        raise self._error()

    def _function(self) -> Predicate:
        name = self._take("path")
        self._take("lparen")
        args = [self._operand()]
        while self._peek()[0] == "comma":
            self.pos += 1
            args.append(self._operand())
        self._take("rparen")

        if name == "attribute_exists":
            return lambda item: args[0](item) is not _MISSING
        if name == "attribute_not_exists":
            return lambda item: args[0](item) is _MISSING
        if len(args) != 2:
            raise self._error()
        if name == "contains":
            return lambda item: _contains(args[0](item), args[1](item))
        if name == "begins_with":
            return lambda item: _begins_with(args[0](item), args[1](item))
        raise self._error()


def _begins_with(value: Any, prefix: Any) -> bool:
    if value is _MISSING or prefix is _MISSING:
        return False
    return "S" in value and "S" in prefix and value["S"].startswith(prefix["S"])


def _contains(haystack: Any, needle: Any) -> bool:
    if haystack is _MISSING or needle is _MISSING:
        return False
    if "S" in haystack:
        return "S" in needle and needle["S"] in haystack["S"]
    if "SS" in haystack:
        return "S" in needle and needle["S"] in haystack["SS"]
    if "NS" in haystack:
        return "N" in needle and Decimal(needle["N"]) in {Decimal(v) for v in haystack["NS"]}
    if "L" in haystack:
        return any(_compare("=", element, needle) for element in haystack["L"])
    return False


def compile_condition(
    expression: str,
    names: Optional[Dict[str, str]] = None,
    values: Optional[Dict[str, Any]] = None,
    operation: str = "scan",
) -> Predicate:
    """Compile a condition/filter expression into a predicate over wire items."""
    return _ConditionParser(expression, _ExpressionContext(names, values, operation)).parse()


def _split_top_level(text: str) -> List[str]:
    parts, depth, current = [], 0, []
    for char in text:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def apply_update(
    item: Item,
    expression: str,
    names: Optional[Dict[str, str]],
    values: Optional[Dict[str, Any]],
) -> Item:
    """Apply a SET/REMOVE update expression to a wire item (returns a copy)."""
    operation = "update_item"
    context = _ExpressionContext(names, values, operation)
    updated = copy.deepcopy(item)

    sections = re.split(r"\b(SET|REMOVE)\b", expression)
    if not expression.strip() or sections[0].strip():
        raise _validation(f"Invalid UpdateExpression: {expression!r}", operation)

    for keyword, body in zip(sections[1::2], sections[2::2]):
        for clause in _split_top_level(body):
            if keyword == "SET":
                if "=" not in clause:
                    raise _validation(f"Invalid SET clause: {clause!r}", operation)
                target, source = (p.strip() for p in clause.split("=", 1))
                if source not in context.values:
                    raise _validation(
                        f"An expression attribute value used in expression is not defined: {source}",
                        operation,
                    )
                _set_path(updated, context.path(target), copy.deepcopy(context.values[source]))
            else:
                _remove_path(updated, context.path(clause))
    return updated


def _parent(item: Item, path: List[Any]) -> Optional[Dict[str, Any]]:
    """Walk to the wire map holding the last path segment."""
    container: Dict[str, Any] = item
    for segment in path[:-1]:
        if isinstance(segment, int) or segment not in container or "M" not in container[segment]:
            return None
        container = container[segment]["M"]
    return container


def _set_path(item: Item, path: List[Any], value: Any) -> None:
    if isinstance(path[-1], int):
        raise _validation("List index updates are not supported", "update_item")
    container = _parent(item, path)
    if container is None:
        raise _validation(
            "The document path provided in the update expression is invalid for update",
            "update_item",
        )
    container[path[-1]] = value


def _remove_path(item: Item, path: List[Any]) -> None:
    container = _parent(item, path)
    if container is not None and not isinstance(path[-1], int):
        container.pop(path[-1], None)


def _project(item: Item, expression: Optional[str], names: Optional[Dict[str, str]]) -> Item:
    if not expression:
        return item
    context = _ExpressionContext(names, None, "projection")
    projected: Item = {}
    for text in _split_top_level(expression):
        path = context.path(text)
        top = path[0]
        if top in item:
            # Nested projections keep the whole top-level attribute
            projected[top] = item[top]
    return projected


def _validate_attribute(name: str, value: Any, operation: str) -> None:
    if not isinstance(value, dict) or len(value) != 1:
        raise _validation(f"Invalid attribute value for '{name}'", operation)
    tag, raw = next(iter(value.items()))
    if tag in ("SS", "NS"):
        if not raw:
            raise _validation(
                f"One or more parameter values were invalid: An number set or string set "
                f"may not be empty for '{name}'",
                operation,
            )
        if len(set(raw)) != len(raw):
            raise _validation(f"Input collection contains duplicates for '{name}'", operation)
    elif tag == "M":
        for key, nested in raw.items():
            _validate_attribute(f"{name}.{key}", nested, operation)
    elif tag == "L":
        for nested in raw:
            _validate_attribute(name, nested, operation)
    elif tag not in ("S", "N", "BOOL", "NULL", "B", "BS"):
        raise _validation(f"Unsupported attribute type '{tag}' for '{name}'", operation)


class InMemoryStore:
    """In-memory implementation of StoreClient for testing.

    Attributes:
        page_size: Maximum items evaluated per scan page (simulates the
            store's response size limit)
        requests: Log of (operation, request) tuples, for assertions

    Thread safety:
        Uses an asyncio lock around mutations. Safe to use from
        multiple coroutines.

    Example:
        >>> store = InMemoryStore(page_size=2)
        >>> await store.connect()
        >>> await store.create_table(**schema.table_definition("orgs"))
    """

    def __init__(self, page_size: Optional[int] = None) -> None:
        """Initialize in-memory store.

        Args:
            page_size: Items evaluated per scan page (None = unlimited)
        """
        self.page_size = page_size
        self.requests: List[Tuple[str, Dict[str, Any]]] = []
        self._tables: Dict[str, InMemoryTable] = {}
        self._connected = False
        self._lock = asyncio.Lock()
        self._failures: Dict[str, StoreError] = {}

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryStore connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._tables.clear()
        logger.debug("InMemoryStore closed")

    def _begin(self, operation: str, request: Dict[str, Any]) -> None:
        if not self._connected:
            raise StoreConnectionError("Not connected", operation=operation)
        self.requests.append((operation, copy.deepcopy(request)))
        failure = self._failures.pop(operation, None)
        if failure is not None:
            raise failure

    def _table(self, name: str, operation: str) -> InMemoryTable:
        table = self._tables.get(name)
        if table is None:
            raise StoreError(
                f"Requested resource not found: Table: {name} not found",
                code=RESOURCE_NOT_FOUND,
                operation=operation,
            )
        return table

    def _key_of(self, table: InMemoryTable, attributes: Item, operation: str) -> str:
        key = {}
        for name in table.key_names:
            if name not in attributes:
                raise _validation(
                    "The provided key element does not match the schema", operation
                )
            key[name] = attributes[name]
        if set(attributes) - set(table.key_names) and operation != "put_item":
            raise _validation("The provided key element does not match the schema", operation)
        for definition in table.description["AttributeDefinitions"]:
            name = definition["AttributeName"]
            if name in key and definition["AttributeType"] not in key[name]:
                raise _validation(
                    "The provided key element does not match the schema", operation
                )
        return json.dumps(key, sort_keys=True)

    def _check_item(self, table: InMemoryTable, item: Item, operation: str) -> str:
        for name, value in item.items():
            _validate_attribute(name, value, operation)
        types = {
            d["AttributeName"]: d["AttributeType"]
            for d in table.description["AttributeDefinitions"]
        }
        for name, attr_type in types.items():
            if name in item and attr_type not in item[name]:
                raise _validation(
                    f"One or more parameter values were invalid: Type mismatch for "
                    f"Index Key {name} Expected: {attr_type}",
                    operation,
                )
        return self._key_of(table, {k: item[k] for k in table.key_names if k in item}, operation)

    def _check_condition(self, request: Dict[str, Any], existing: Optional[Item], operation: str) -> None:
        expression = request.get("ConditionExpression")
        if not expression:
            return
        predicate = compile_condition(
            expression,
            request.get("ExpressionAttributeNames"),
            request.get("ExpressionAttributeValues"),
            operation,
        )
        if not predicate(existing or {}):
            raise StoreError(
                "The conditional request failed",
                code=CONDITIONAL_CHECK_FAILED,
                operation=operation,
            )

    # Table administration

    async def create_table(self, **request: Any) -> Response:
        self._begin("create_table", request)
        name = request["TableName"]
        async with self._lock:
            if name in self._tables:
                raise StoreError(
                    f"Table already exists: {name}",
                    code=RESOURCE_IN_USE,
                    operation="create_table",
                )
            for index in request.get("GlobalSecondaryIndexes", []):
                key_types = [k["KeyType"] for k in index["KeySchema"]]
                if "HASH" not in key_types and "RANGE" not in key_types:
                    raise _validation("Invalid KeySchema for index", "create_table")
            description = copy.deepcopy(request)
            description.update(
                {
                    "TableStatus": "ACTIVE",
                    "CreationDateTime": time.time(),
                    "BillingModeSummary": {
                        "BillingMode": request.get("BillingMode", "PROVISIONED")
                    },
                }
            )
            for index in description.get("GlobalSecondaryIndexes", []):
                index["IndexStatus"] = "ACTIVE"
            self._tables[name] = InMemoryTable(description=description)
        logger.debug("Table created", extra={"table": name})
        return {"TableDescription": self._describe(self._tables[name])}

    def _describe(self, table: InMemoryTable) -> Dict[str, Any]:
        description = copy.deepcopy(table.description)
        description["ItemCount"] = len(table.items)
        return description

    async def list_tables(self, **request: Any) -> Response:
        self._begin("list_tables", request)
        names = sorted(self._tables)
        start = request.get("ExclusiveStartTableName")
        if start is not None:
            names = [n for n in names if n > start]
        limit = request.get("Limit", 100)
        response: Response = {"TableNames": names[:limit]}
        if len(names) > limit:
            response["LastEvaluatedTableName"] = names[limit - 1]
        return response

    async def describe_table(self, **request: Any) -> Response:
        self._begin("describe_table", request)
        return {"Table": self._describe(self._table(request["TableName"], "describe_table"))}

    async def update_table(self, **request: Any) -> Response:
        self._begin("update_table", request)
        async with self._lock:
            table = self._table(request["TableName"], "update_table")
            description = table.description
            for definition in request.get("AttributeDefinitions", []):
                known = [d["AttributeName"] for d in description["AttributeDefinitions"]]
                if definition["AttributeName"] not in known:
                    description["AttributeDefinitions"].append(copy.deepcopy(definition))
            for update in request.get("GlobalSecondaryIndexUpdates", []):
                indexes = description.setdefault("GlobalSecondaryIndexes", [])
                if "Delete" in update:
                    name = update["Delete"]["IndexName"]
                    if table.index(name) is None:
                        raise StoreError(
                            f"Requested resource not found: Index {name}",
                            code=RESOURCE_NOT_FOUND,
                            operation="update_table",
                        )
                    description["GlobalSecondaryIndexes"] = [
                        i for i in indexes if i["IndexName"] != name
                    ]
                elif "Create" in update:
                    index = copy.deepcopy(update["Create"])
                    if table.index(index["IndexName"]) is not None:
                        raise _validation(
                            f"Index {index['IndexName']} already exists", "update_table"
                        )
                    index["IndexStatus"] = "ACTIVE"
                    indexes.append(index)
        return {"TableDescription": self._describe(table)}

    async def delete_table(self, **request: Any) -> Response:
        self._begin("delete_table", request)
        async with self._lock:
            table = self._table(request["TableName"], "delete_table")
            del self._tables[request["TableName"]]
        return {"TableDescription": self._describe(table)}

    # Single-item operations

    async def get_item(self, **request: Any) -> Response:
        self._begin("get_item", request)
        table = self._table(request["TableName"], "get_item")
        item = table.items.get(self._key_of(table, request["Key"], "get_item"))
        if item is None:
            return {}
        return {
            "Item": copy.deepcopy(
                _project(
                    item,
                    request.get("ProjectionExpression"),
                    request.get("ExpressionAttributeNames"),
                )
            )
        }

    async def put_item(self, **request: Any) -> Response:
        self._begin("put_item", request)
        async with self._lock:
            table = self._table(request["TableName"], "put_item")
            key = self._check_item(table, request["Item"], "put_item")
            self._check_condition(request, table.items.get(key), "put_item")
            table.write(key, request["Item"])
        return {}

    async def delete_item(self, **request: Any) -> Response:
        self._begin("delete_item", request)
        async with self._lock:
            table = self._table(request["TableName"], "delete_item")
            key = self._key_of(table, request["Key"], "delete_item")
            existing = table.items.get(key)
            self._check_condition(request, existing, "delete_item")
            table.items.pop(key, None)
        if existing is not None and request.get("ReturnValues") == "ALL_OLD":
            return {"Attributes": copy.deepcopy(existing)}
        return {}

    async def update_item(self, **request: Any) -> Response:
        self._begin("update_item", request)
        async with self._lock:
            table = self._table(request["TableName"], "update_item")
            key = self._key_of(table, request["Key"], "update_item")
            existing = table.items.get(key)
            self._check_condition(request, existing, "update_item")
            base = copy.deepcopy(existing) if existing is not None else copy.deepcopy(request["Key"])
            updated = apply_update(
                base,
                request.get("UpdateExpression", ""),
                request.get("ExpressionAttributeNames"),
                request.get("ExpressionAttributeValues"),
            )
            for name in table.key_names:
                if updated.get(name) != request["Key"][name]:
                    raise _validation(
                        f"Cannot update attribute {name}. This attribute is part of the key",
                        "update_item",
                    )
            self._check_item(table, updated, "update_item")
            table.write(key, updated)
        if request.get("ReturnValues") == "ALL_NEW":
            return {"Attributes": copy.deepcopy(updated)}
        return {}

    # Batch operations

    async def batch_get_item(self, **request: Any) -> Response:
        self._begin("batch_get_item", request)
        request_items = request.get("RequestItems", {})
        total = sum(len(spec.get("Keys", [])) for spec in request_items.values())
        if total == 0 or total > BATCH_GET_LIMIT:
            raise _validation(
                f"Too many items requested for the BatchGetItem call ({total})",
                "batch_get_item",
            )
        responses: Dict[str, List[Item]] = {}
        for table_name, spec in request_items.items():
            table = self._table(table_name, "batch_get_item")
            keys = [self._key_of(table, k, "batch_get_item") for k in spec["Keys"]]
            if len(set(keys)) != len(keys):
                raise _validation(
                    "Provided list of item keys contains duplicates", "batch_get_item"
                )
            responses[table_name] = [
                copy.deepcopy(
                    _project(
                        table.items[k],
                        spec.get("ProjectionExpression"),
                        spec.get("ExpressionAttributeNames"),
                    )
                )
                for k in keys
                if k in table.items
            ]
        return {"Responses": responses, "UnprocessedKeys": {}}

    async def batch_write_item(self, **request: Any) -> Response:
        self._begin("batch_write_item", request)
        request_items = request.get("RequestItems", {})
        total = sum(len(entries) for entries in request_items.values())
        if total == 0 or total > BATCH_WRITE_LIMIT:
            raise _validation(
                f"Too many items requested for the BatchWriteItem call ({total})",
                "batch_write_item",
            )
        async with self._lock:
            planned: List[Tuple[InMemoryTable, str, Optional[Item]]] = []
            for table_name, entries in request_items.items():
                table = self._table(table_name, "batch_write_item")
                seen = set()
                for entry in entries:
                    if "PutRequest" in entry:
                        item = entry["PutRequest"]["Item"]
                        key = self._check_item(table, item, "batch_write_item")
                        planned.append((table, key, item))
                    elif "DeleteRequest" in entry:
                        key = self._key_of(table, entry["DeleteRequest"]["Key"], "batch_write_item")
                        planned.append((table, key, None))
                    else:
                        raise _validation("Invalid write request", "batch_write_item")
                    if key in seen:
                        raise _validation(
                            "Provided list of item keys contains duplicates", "batch_write_item"
                        )
                    seen.add(key)
            for table, key, item in planned:
                if item is None:
                    table.items.pop(key, None)
                else:
                    table.write(key, item)
        return {"UnprocessedItems": {}}

    async def scan(self, **request: Any) -> Response:
        self._begin("scan", request)
        table = self._table(request["TableName"], "scan")

        index_name = request.get("IndexName")
        key_names = list(table.key_names)
        if index_name:
            index = table.index(index_name)
            if index is None:
                raise _validation(
                    f"The table does not have the specified index: {index_name}", "scan"
                )
            index_keys = [k["AttributeName"] for k in index["KeySchema"]]
            projected = key_names + [k for k in index_keys if k not in key_names]
            entries = [
                (key, {k: item[k] for k in projected if k in item})
                for key, item in table.ordered()
                if all(k in item for k in index_keys)
            ]
        else:
            entries = table.ordered()

        start_key = request.get("ExclusiveStartKey")
        if start_key is not None:
            start = self._key_of(table, {k: start_key[k] for k in key_names}, "scan")
            position = table.positions.get(start, -1)
            entries = [(key, item) for key, item in entries if table.positions[key] > position]
        candidates = [item for _, item in entries]

        limits = [n for n in (request.get("Limit"), self.page_size) if n]
        page_limit = min(limits) if limits else None
        evaluated = candidates[:page_limit] if page_limit else candidates

        expression = request.get("FilterExpression")
        if expression:
            predicate = compile_condition(
                expression,
                request.get("ExpressionAttributeNames"),
                request.get("ExpressionAttributeValues"),
                "scan",
            )
            matched = [item for item in evaluated if predicate(item)]
        else:
            matched = evaluated

        response: Response = {"Count": len(matched), "ScannedCount": len(evaluated)}
        if request.get("Select") != "COUNT":
            response["Items"] = [
                copy.deepcopy(
                    _project(
                        item,
                        request.get("ProjectionExpression"),
                        request.get("ExpressionAttributeNames"),
                    )
                )
                for item in matched
            ]
        if page_limit and len(candidates) > len(evaluated):
            last = evaluated[-1]
            last_key_names = key_names
            if index_name:
                last_key_names = list(last.keys())
            response["LastEvaluatedKey"] = copy.deepcopy({k: last[k] for k in last_key_names})
        return response

    # Testing helpers

    def get_requests(self, operation: str) -> List[Dict[str, Any]]:
        """Get logged requests for one operation (testing helper)."""
        return [request for op, request in self.requests if op == operation]

    def clear_requests(self) -> None:
        """Forget logged requests (testing helper)."""
        self.requests.clear()

    def get_items(self, table_name: str) -> List[Item]:
        """Get all raw wire items of a table (testing helper)."""
        table = self._tables.get(table_name)
        return [copy.deepcopy(item) for _, item in table.ordered()] if table else []

    def inject_failure(self, operation: str, error: Optional[StoreError] = None) -> None:
        """Make the next call of an operation fail (testing helper)."""
        self._failures[operation] = error or StoreError(
            "Injected failure", code="InternalServerError", operation=operation
        )


__all__ = ["InMemoryStore", "compile_condition", "apply_update"]

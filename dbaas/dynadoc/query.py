"""
Query builder translating Mongo-style filters and updates to wire requests.

A Query is created by a Model for one logical operation. It owns the
attribute-name aliases and value placeholders of the request it builds, so
field names never collide with the store's reserved words.

Translation rules:
    - ``_id`` is aliased to ``#id``; other names to ``#<name>``
    - Dotted paths alias each segment: ``a.b`` -> ``#a.#b``
    - ``{"f": {"$in": [x, y]}}`` -> ``(#f = :v0 OR #f = :v1)``
    - Paths under ``permissions.`` use ``contains(path, :v)``
    - Clauses are AND-joined in filter key order
    - ``$text`` and unknown operators raise NotImplementedError

Invariants:
    - Every batched request carries at most BATCH_LIMIT entries
    - Chunks preserve the caller's ordering
    - Each request only references names/values it declares

How to change safely:
    - Keep clause order stable; tests compare request bodies
    - New operators must be supported by every StoreClient evaluator
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence

from .codec import WireValue, encode, encode_item
from .errors import DataFormatError, NotImplementedError

if TYPE_CHECKING:
    from .model import Model

# Hard cap of items per batched request
BATCH_LIMIT = 25

PERMISSIONS_PREFIX = "permissions."

_ALIAS_UNSAFE = re.compile(r"[^A-Za-z0-9_]")


def chunk(items: Sequence[Any], size: int = BATCH_LIMIT) -> List[List[Any]]:
    """Split items into order-preserving chunks of at most `size`."""
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def is_point_lookup(filter: Dict[str, Any]) -> bool:
    """Whether a filter is exactly {_id: value} or {_id: {$in: [...]}}."""
    if list(filter) != ["_id"]:
        return False
    value = filter["_id"]
    if isinstance(value, str):
        return True
    return (
        isinstance(value, dict)
        and list(value) == ["$in"]
        and isinstance(value["$in"], (list, tuple))
    )


def point_lookup_ids(filter: Dict[str, Any]) -> List[str]:
    """Identifiers requested by a point-lookup filter, without duplicates."""
    value = filter["_id"]
    ids = [value] if isinstance(value, str) else list(value["$in"])
    return list(dict.fromkeys(ids))


class Query:
    """Per-operation request builder bound to one model.

    Attributes:
        model: Owning model
        table_name: Table the requests target
        names: Attribute-name aliases of the last built request
        values: Value placeholders of the last built request
        matches_nothing: Set when the filter cannot match any document
            (e.g. an empty $in list); callers skip I/O

    Example:
        >>> query = Query(Org)
        >>> query.scan({"archived": False, "_id": {"$in": ["a", "b"]}})
        {'TableName': 'orgs',
         'FilterExpression': '#archived = :v0 AND (#id = :v1 OR #id = :v2)', ...}
    """

    def __init__(self, model: Model) -> None:
        self.model = model
        self.table_name = model.table_name
        self.names: Dict[str, str] = {}
        self.values: Dict[str, WireValue] = {}
        self.matches_nothing = False

    def _reset(self) -> None:
        self.names = {}
        self.values = {}
        self.matches_nothing = False

    def alias(self, path: str) -> str:
        """Alias a (possibly dotted) attribute path."""
        aliases = []
        for segment in path.split("."):
            if segment == "_id":
                alias = "#id"
            else:
                alias = "#" + _ALIAS_UNSAFE.sub("_", segment)
            # Distinct names that sanitize to the same alias
            base, n = alias, 1
            while self.names.get(alias, segment) != segment:
                alias = f"{base}_{n}"
                n += 1
            self.names[alias] = segment
            aliases.append(alias)
        return ".".join(aliases)

    def placeholder(self, value: Any) -> str:
        """Encode a value and register a placeholder for it.

        Raises:
            DataFormatError: If the value cannot be encoded or is dropped
        """
        wire_value = encode(value)
        if wire_value is None:
            raise DataFormatError(f"Cannot use empty value {value!r} in an expression", value=value)
        name = f":v{len(self.values)}"
        self.values[name] = wire_value
        return name

    def _request(self, **body: Any) -> Dict[str, Any]:
        request: Dict[str, Any] = {"TableName": self.table_name}
        request.update({k: v for k, v in body.items() if v is not None})
        if self.names:
            request["ExpressionAttributeNames"] = dict(self.names)
        if self.values:
            request["ExpressionAttributeValues"] = dict(self.values)
        return request

    # Filters

    def filter_expression(self, filter: Dict[str, Any]) -> Optional[str]:
        """Translate a filter into a FilterExpression (None when empty).

        Raises:
            NotImplementedError: For $text or unsupported operators
            DataFormatError: For values the codec cannot encode
        """
        clauses = []
        for key, value in filter.items():
            if key == "$text":
                raise NotImplementedError(
                    "Text search is not supported", capability="$text"
                )
            if key.startswith("$"):
                raise NotImplementedError(
                    f"Filter operator '{key}' is not supported", capability=key
                )

            path = self.alias(key)
            contains = key.startswith(PERMISSIONS_PREFIX)

            if isinstance(value, dict) and any(k.startswith("$") for k in value):
                unsupported = [k for k in value if k != "$in"]
                if unsupported:
                    raise NotImplementedError(
                        f"Filter operator '{unsupported[0]}' is not supported",
                        capability=unsupported[0],
                    )
                options = value["$in"]
                if not isinstance(options, (list, tuple)):
                    raise DataFormatError("$in requires an array", field_name=key, value=options)
                if not options:
                    self.matches_nothing = True
                    continue
                group = [self._clause(path, option, contains) for option in options]
                clauses.append("(" + " OR ".join(group) + ")")
            else:
                clauses.append(self._clause(path, value, contains))

        return " AND ".join(clauses) if clauses else None

    def _clause(self, path: str, value: Any, contains: bool) -> str:
        if encode(value) is None:
            # "" and [] are never stored
            return f"attribute_not_exists({path})"
        placeholder = self.placeholder(value)
        if contains:
            return f"contains({path}, {placeholder})"
        return f"{path} = {placeholder}"

    def projection_expression(self, fields: Iterable[str]) -> str:
        return ", ".join(self.alias(f) for f in fields)

    def scan(
        self,
        filter: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
        start_key: Optional[Dict[str, WireValue]] = None,
        index_name: Optional[str] = None,
        keys_only: bool = False,
        count: bool = False,
    ) -> Dict[str, Any]:
        """Build a Scan request.

        Args:
            filter: Mongo-style filter
            limit: Items evaluated per page
            start_key: Continuation token from the previous page
            index_name: Scan a secondary index instead of the table
            keys_only: Only return _id (used for deletion)
            count: Request only a count (Select=COUNT)

        Returns:
            Scan request body
        """
        self._reset()
        expression = self.filter_expression(filter or {})
        projection = self.projection_expression(["_id"]) if keys_only and not count else None
        return self._request(
            IndexName=index_name,
            FilterExpression=expression,
            ProjectionExpression=projection,
            Select="COUNT" if count else None,
            Limit=limit,
            ExclusiveStartKey=start_key,
        )

    def count(self, filter: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Build a Scan request returning only the match count."""
        return self.scan(filter, count=True)

    # Point lookups

    @staticmethod
    def key(id: str) -> Dict[str, WireValue]:
        if not isinstance(id, str) or not id:
            raise DataFormatError(f"Invalid _id {id!r}", field_name="_id", value=id)
        return {"_id": {"S": id}}

    def get_item(self, id: str) -> Dict[str, Any]:
        """Build a GetItem request for one document."""
        self._reset()
        return self._request(Key=self.key(id))

    def batch_get_item(self, ids: Sequence[str]) -> List[Dict[str, Any]]:
        """Build BatchGetItem requests, one per chunk of BATCH_LIMIT keys."""
        self._reset()
        return [
            {"RequestItems": {self.table_name: {"Keys": [self.key(id) for id in group]}}}
            for group in chunk(list(dict.fromkeys(ids)))
        ]

    # Mutations

    def update_expression(self, update: Dict[str, Any]) -> str:
        """Translate an update document into SET/REMOVE clauses.

        ``""`` and empty arrays remove the attribute. A ``$set`` wrapper is
        unwrapped; other update operators are not supported.
        """
        if "$set" in update:
            update = {**{k: v for k, v in update.items() if k != "$set"}, **update["$set"]}

        sets, removes = [], []
        for key, value in update.items():
            if key.startswith("$"):
                raise NotImplementedError(
                    f"Update operator '{key}' is not supported", capability=key
                )
            if key == "_id":
                continue
            path = self.alias(key)
            if encode(value) is None:
                removes.append(path)
            else:
                sets.append(f"{path} = {self.placeholder(value)}")

        parts = []
        if sets:
            parts.append("SET " + ", ".join(sets))
        if removes:
            parts.append("REMOVE " + ", ".join(removes))
        return " ".join(parts)

    def update_item(self, id: str, update: Dict[str, Any]) -> Dict[str, Any]:
        """Build an UpdateItem request returning the new document.

        The request is conditioned on the document existing, so updates
        never create documents.
        """
        self._reset()
        expression = self.update_expression(update)
        condition = f"attribute_exists({self.alias('_id')})"
        return self._request(
            Key=self.key(id),
            UpdateExpression=expression,
            ConditionExpression=condition,
            ReturnValues="ALL_NEW",
        )

    def delete_item(self, id: str) -> Dict[str, Any]:
        """Build a DeleteItem request for one document."""
        self._reset()
        return self._request(Key=self.key(id))

    def batch_write_item(
        self,
        items: Sequence[Any],
        operation: str = "put",
    ) -> List[Dict[str, Any]]:
        """Build BatchWriteItem requests, one per chunk of BATCH_LIMIT entries.

        Args:
            items: Native documents (put) or _id values (delete)
            operation: "put" or "delete"
        """
        self._reset()
        if operation == "put":
            entries = [{"PutRequest": {"Item": encode_item(doc)}} for doc in items]
        elif operation == "delete":
            entries = [{"DeleteRequest": {"Key": self.key(id)}} for id in items]
        else:
            raise ValueError(f"Unknown batch write operation: {operation}")
        return [{"RequestItems": {self.table_name: group}} for group in chunk(entries)]

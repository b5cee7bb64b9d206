"""
Model: the data-access facade bound to one schema and one table.

A Model is created once per document type at process start. Every
operation builds a fresh Query, sends the resulting wire requests through
the StoreClient and turns the responses back into native documents with
the codec and the schema's defaults.

Operation summary:
    - find / find_one: point lookups for {_id} filters, scans otherwise
    - insert_many: validate, reject _id collisions, batched puts, re-read
    - update_one / update_many: conditional UpdateItem (no upserts)
    - delete_many: keys-only scan pages followed by batched deletes
    - count_documents: Select=COUNT scans

Invariants:
    - Validation runs before any request is issued
    - Store errors leave a Model only as DatabaseError
    - Pages of a scan are requested strictly in order
    - Nothing is retried; partial writes of multi-chunk operations stay

How to change safely:
    - Keep find() returning a list and find_one() returning None on miss
    - New operations must go through _call() so errors are wrapped
    - Update the in-memory store when new wire features are used
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections import Counter
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .codec import NULL_SENTINEL, decode, decode_item
from .errors import DatabaseError, DataFormatError, NotImplementedError, PermissionError
from .query import PERMISSIONS_PREFIX, Query, is_point_lookup, point_lookup_ids
from .registry import ModelRegistry
from .schema import FieldSpec, FieldType, PopulateSpec, Schema, to_epoch_millis
from .store.base import (
    CONDITIONAL_CHECK_FAILED,
    RESOURCE_IN_USE,
    Response,
    StoreClient,
    StoreError,
)

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Projection = Union[str, Sequence[str], Dict[str, Any], None]
Sort = Union[str, Dict[str, Any], None]

_ABSENT = object()

# Table status polling after CreateTable
TABLE_ACTIVE_POLL_INTERVAL = 0.5
TABLE_ACTIVE_POLL_ATTEMPTS = 60


def _describe_ids(ids: Iterable[str]) -> str:
    return ", ".join(f'_id "{id}"' for id in ids)


def _get_path(doc: Any, path: str) -> Any:
    current = doc
    for segment in path.split("."):
        if not isinstance(current, dict) or segment not in current:
            return _ABSENT
        current = current[segment]
    return current


def _parse_projection(projection: Projection) -> Optional[Tuple[bool, List[str]]]:
    """Parse a projection into (exclude, fields).

    A projection whose every token is prefixed with "-" (or a map whose
    values are all falsy) excludes; anything else includes.
    """
    if not projection:
        return None
    if isinstance(projection, str):
        tokens = projection.replace(",", " ").split()
    elif isinstance(projection, dict):
        tokens = [name if flag else f"-{name}" for name, flag in projection.items()]
    else:
        tokens = list(projection)
    if not tokens:
        return None
    if all(t.startswith("-") for t in tokens):
        return True, [t[1:] for t in tokens]
    return False, [t for t in tokens if not t.startswith("-")]


def _pick(source: Dict[str, Any], path: str, target: Dict[str, Any]) -> None:
    head, _, rest = path.partition(".")
    if head not in source:
        return
    if rest and isinstance(source[head], dict):
        _pick(source[head], rest, target.setdefault(head, {}))
    else:
        target[head] = source[head]


def _drop(doc: Dict[str, Any], path: str) -> None:
    head, _, rest = path.partition(".")
    if rest:
        if isinstance(doc.get(head), dict):
            _drop(doc[head], rest)
    else:
        doc.pop(head, None)


def apply_projection(doc: Document, projection: Projection) -> Document:
    """Apply an inclusion or exclusion projection; _id survives inclusion."""
    parsed = _parse_projection(projection)
    if parsed is None:
        return doc
    exclude, fields = parsed
    if exclude:
        for path in fields:
            _drop(doc, path)
        return doc
    projected: Document = {}
    for path in ["_id", *fields]:
        _pick(doc, path, projected)
    return projected


def _sort_key(value: Any) -> Tuple[int, Any]:
    if value is _ABSENT or value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (3, value)
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    return (4, repr(value))


def sort_documents(docs: List[Document], sort: Sort) -> List[Document]:
    """Sort documents by a single key.

    Args:
        docs: Documents to sort
        sort: "field", "-field" or {"field": 1 | -1}; only the first key is used
    """
    if not sort:
        return docs
    if isinstance(sort, str):
        field = sort.lstrip("-")
        descending = sort.startswith("-")
    else:
        field, order = next(iter(sort.items()))
        descending = order in (-1, "-1", "desc", "descending")
    return sorted(docs, key=lambda d: _sort_key(_get_path(d, field)), reverse=descending)


def _matches(doc: Document, filter: Dict[str, Any]) -> bool:
    """Evaluate an equality/$in filter against a decoded document."""
    for key, expected in filter.items():
        actual = _get_path(doc, key)
        if isinstance(expected, dict) and "$in" in expected:
            options = list(expected["$in"])
        else:
            options = [expected]
        if key.startswith(PERMISSIONS_PREFIX):
            found = any(
                isinstance(actual, (list, str)) and option in actual for option in options
            )
        else:
            found = any(
                (actual is _ABSENT and option == "") or actual == option for option in options
            )
        if not found:
            return False
    return True


class ModelStatics:
    """Schema statics bound to one model.

    Each static receives the model as its first argument:

        >>> schema.static("find_by_name", lambda model, name: model.find_one({"name": name}))
        >>> await Org.statics.find_by_name("Acme")
    """

    kind = "static"

    def __init__(self, model: Model) -> None:
        self._model = model
        self._functions: Dict[str, Callable[..., Any]] = dict(self._declared(model.schema))

    @staticmethod
    def _declared(schema: Schema) -> Dict[str, Callable[..., Any]]:
        return schema.statics

    def __getattr__(self, name: str) -> Callable[..., Any]:
        functions = self.__dict__.get("_functions", {})
        if name not in functions:
            raise AttributeError(f"Model '{self._model.name}' has no {self.kind} '{name}'")
        return functools.partial(functions[name], self._model)

    def __contains__(self, name: str) -> bool:
        return name in self._functions

    def names(self) -> List[str]:
        """Names of the available functions."""
        return list(self._functions)


class DocumentMethods(ModelStatics):
    """Schema methods bound to one model.

    Each method receives the model and a document:

        >>> schema.method("label", lambda model, doc: f"{model.name}:{doc['_id']}")
        >>> Org.methods.label(doc)
    """

    kind = "method"

    @staticmethod
    def _declared(schema: Schema) -> Dict[str, Callable[..., Any]]:
        return schema.methods


class Model:
    """Document model bound to one table.

    Attributes:
        name: Declared model name (used by population)
        schema: Schema describing the documents
        store: StoreClient the requests are sent through
        registry: Registry used to resolve references, if any
        table_name: Backing table (prefix + collection or name)

    Example:
        >>> registry = ModelRegistry()
        >>> Org = Model("Organization", OrgSchema, store, registry, collection="orgs")
        >>> await Org.init()
        >>> await Org.insert_many([{"_id": "acme", "name": "Acme"}])
        >>> await Org.find({"archived": False}, "name", limit=10, sort="-name")
    """

    def __init__(
        self,
        name: str,
        schema: Schema,
        store: StoreClient,
        registry: Optional[ModelRegistry] = None,
        collection: Optional[str] = None,
        table_prefix: str = "",
    ) -> None:
        self.name = name
        self.schema = schema
        self.store = store
        self.registry = registry
        self.table_name = f"{table_prefix}{collection or name}"
        self.statics = ModelStatics(self)
        self.methods = DocumentMethods(self)

    def __repr__(self) -> str:
        return f"Model(name={self.name!r}, table={self.table_name!r})"

    @property
    def indexes(self) -> List[str]:
        """Fields with a declared secondary index."""
        return self.schema.indexes

    async def _call(
        self,
        operation: str,
        request: Dict[str, Any],
        tolerate: Tuple[str, ...] = (),
    ) -> Optional[Response]:
        """Send one request, wrapping store errors.

        Args:
            operation: StoreClient method name
            request: Wire request body
            tolerate: Store error codes that yield None instead of raising

        Raises:
            DatabaseError: On any other store failure
        """
        try:
            return await getattr(self.store, operation)(**request)
        except StoreError as e:
            if e.code in tolerate:
                logger.debug(
                    "Tolerated store error",
                    extra={"model": self.name, "operation": operation, "store_code": e.code},
                )
                return None
            logger.error(
                f"Store request failed: {e}",
                extra={
                    "model": self.name,
                    "table": self.table_name,
                    "operation": operation,
                    "store_code": e.code,
                },
            )
            raise DatabaseError(
                f"{operation} on table '{self.table_name}' failed: {e}",
                operation=operation,
                store_code=e.code,
            ) from e

    # Lifecycle

    async def init(self) -> None:
        """Ensure the backing table exists and register the model.

        Idempotent: an existing table is left untouched.

        Raises:
            DatabaseError: If the table cannot be listed or created
            RegistryFrozenError: If the registry was frozen before this model
        """
        if self.table_name not in await self.list_tables():
            await self.create_table()
        if self.registry is not None:
            self.registry.register(self)
        logger.info("Model initialized", extra={"model": self.name, "table": self.table_name})

    async def create_table(self) -> None:
        """Create the backing table (on-demand capacity) and wait until active.

        A table that already exists is not an error.
        """
        response = await self._call(
            "create_table",
            self.schema.table_definition(self.table_name),
            tolerate=(RESOURCE_IN_USE,),
        )
        if response is None:
            logger.debug("Table already exists", extra={"table": self.table_name})
            return
        logger.info(
            "Table created",
            extra={"table": self.table_name, "indexes": self.indexes},
        )
        await self._wait_until_active()

    async def _wait_until_active(self) -> None:
        for _ in range(TABLE_ACTIVE_POLL_ATTEMPTS):
            response = await self._call("describe_table", {"TableName": self.table_name})
            if response["Table"].get("TableStatus", "ACTIVE") == "ACTIVE":
                return
            await asyncio.sleep(TABLE_ACTIVE_POLL_INTERVAL)
        raise DatabaseError(
            f"Table '{self.table_name}' did not become active",
            operation="describe_table",
        )

    async def list_tables(self) -> List[str]:
        """Names of all tables in the store (follows pagination)."""
        names: List[str] = []
        request: Dict[str, Any] = {}
        while True:
            response = await self._call("list_tables", request)
            names.extend(response.get("TableNames", []))
            last = response.get("LastEvaluatedTableName")
            if not last:
                return names
            request = {"ExclusiveStartTableName": last}

    async def get_indexes(self) -> List[Dict[str, Any]]:
        """Describe the table's primary and secondary indexes.

        Returns:
            [{"name": "_id_", "key": {"_id": 1}}, {"name": "org_1", ...}, ...]
        """
        response = await self._call("describe_table", {"TableName": self.table_name})
        table = response["Table"]
        indexes = [
            {
                "name": "_id_",
                "key": {k["AttributeName"]: 1 for k in table["KeySchema"]},
            }
        ]
        for index in table.get("GlobalSecondaryIndexes", []):
            indexes.append(
                {
                    "name": index["IndexName"],
                    "key": {k["AttributeName"]: 1 for k in index["KeySchema"]},
                    "projection": index.get("Projection", {}).get("ProjectionType"),
                }
            )
        return indexes

    async def delete_index(self, name: str) -> None:
        """Delete a secondary index by name (e.g. "org_1")."""
        await self._call(
            "update_table",
            {
                "TableName": self.table_name,
                "GlobalSecondaryIndexUpdates": [{"Delete": {"IndexName": name}}],
            },
        )
        logger.info("Index deleted", extra={"table": self.table_name, "index": name})

    async def ensure_indexes(self) -> List[str]:
        """Create declared indexes missing from the table.

        Returns:
            Names of the indexes created
        """
        response = await self._call("describe_table", {"TableName": self.table_name})
        existing = {
            index["IndexName"] for index in response["Table"].get("GlobalSecondaryIndexes", [])
        }
        created = []
        for field_name in self.indexes:
            declaration = self.schema.index_declaration(field_name)
            if declaration["IndexName"] in existing:
                continue
            await self._call(
                "update_table",
                {
                    "TableName": self.table_name,
                    "AttributeDefinitions": self.schema.attribute_definitions,
                    "GlobalSecondaryIndexUpdates": [{"Create": declaration}],
                },
            )
            created.append(declaration["IndexName"])
        if created:
            logger.info("Indexes created", extra={"table": self.table_name, "indexes": created})
        return created

    # Validation

    def _type_error(self, spec: FieldSpec, value: Any) -> DataFormatError:
        return DataFormatError(
            f"Cast to {spec.type.name.title()} failed for value `{value}` at path `{spec.name}`",
            field_name=spec.name,
            value=value,
        )

    def _required_error(self, spec: FieldSpec) -> DataFormatError:
        return DataFormatError(
            spec.required_message or f"Path `{spec.name}` is required.",
            field_name=spec.name,
        )

    def _check_scalar(self, spec: FieldSpec, value: Any) -> Any:
        if spec.is_date and isinstance(value, (datetime, date)):
            value = to_epoch_millis(value)

        if spec.type == FieldType.STRING:
            valid = isinstance(value, str)
        elif spec.type == FieldType.NUMBER:
            valid = isinstance(value, (int, float)) and not isinstance(value, bool)
        elif spec.type == FieldType.MAP:
            valid = isinstance(value, dict)
        elif spec.type == FieldType.BOOLEAN:
            valid = isinstance(value, bool)
        else:
            valid = False

        if not valid:
            raise self._type_error(spec, value)
        return value

    def _check_value(self, spec: FieldSpec, value: Any) -> Any:
        """Type-check a present value and run enum and validator checks."""
        if value is None:
            return None

        if spec.array:
            if not isinstance(value, (list, tuple)):
                raise self._type_error(spec, value)
            value = [self._check_scalar(spec, v) for v in value]
            elements = value
        else:
            value = self._check_scalar(spec, value)
            elements = [value]

        if spec.null_default and NULL_SENTINEL in elements:
            raise DataFormatError(
                f'Value "{NULL_SENTINEL}" is reserved and cannot be stored at path `{spec.name}`',
                field_name=spec.name,
                value=value,
            )

        if spec.enum is not None:
            for element in elements:
                if element not in spec.enum:
                    raise DataFormatError(
                        f"`{element}` is not a valid enum value for path `{spec.name}`.",
                        field_name=spec.name,
                        value=element,
                    )

        for validator in spec.validators:
            targets = elements if spec.array and validator.per_element else [value]
            for target in targets:
                if not validator.check(target):
                    raise DataFormatError(
                        validator.error_message(spec.name, target),
                        field_name=spec.name,
                        value=target,
                    )

        return value

    def _default_for(self, spec: FieldSpec) -> Any:
        value = spec.resolve_default()
        if spec.is_date and isinstance(value, (datetime, date)):
            value = to_epoch_millis(value)
        return value

    def validate(self, doc: Document) -> Document:
        """Validate a document and apply defaults.

        Fields not declared on the schema are dropped, as are blank
        strings. A blank string counts as an absent value.

        Args:
            doc: Native document

        Returns:
            A new, validated document

        Raises:
            DataFormatError: On the first failing field
        """
        if not isinstance(doc, dict):
            raise DataFormatError(f"Document must be an object, got {type(doc).__name__}")

        result: Document = {}
        for name, spec in self.schema.fields.items():
            value = doc.get(name, _ABSENT)
            if value is _ABSENT or value == "":
                if spec.has_default:
                    result[name] = self._default_for(spec)
                elif spec.required:
                    raise self._required_error(spec)
                continue

            if value is None and spec.required and not spec.null_default:
                raise self._required_error(spec)

            result[name] = self._check_value(spec, value)

        return result

    def _run_hooks(self, event: str, doc: Document) -> Document:
        """Run the schema's pre hooks for an event on a copy of doc."""
        hooks = self.schema.hooks.get(event)
        if not hooks or not isinstance(doc, dict):
            return doc
        doc = dict(doc)
        for hook in hooks:
            result = hook(doc)
            if result is not None:
                doc = result
        return doc

    def create_document(self, doc: Document) -> Document:
        """Build a validated, defaulted document without touching the store.

        Runs the schema's "save" hooks first.
        """
        return self.validate(self._run_hooks("save", doc))

    def _validate_update(self, update: Dict[str, Any]) -> Dict[str, Any]:
        """Validate the fields of an update document.

        Raises:
            DataFormatError: On unknown paths, invalid values, removal of
                required fields or an empty update
            NotImplementedError: On unsupported update operators
        """
        if not isinstance(update, dict):
            raise DataFormatError("Update must be an object")

        changes = {k: v for k, v in update.items() if k != "$set"}
        changes.update(update.get("$set", {}))

        for key in list(changes):
            if key.startswith("$"):
                raise NotImplementedError(
                    f"Update operator '{key}' is not supported", capability=key
                )
            value = changes[key]
            spec = self.schema.get_field(key.split(".")[0])
            if spec is None:
                raise DataFormatError(f"Path `{key}` is not in schema", field_name=key, value=value)
            if key == "_id" or "." in key:
                continue
            if value == "" or (isinstance(value, (list, tuple)) and not value):
                if spec.required:
                    raise self._required_error(spec)
                continue
            if value is None and spec.required and not spec.null_default:
                raise self._required_error(spec)
            changes[key] = self._check_value(spec, value)

        if not Query(self).update_expression(changes):
            raise DataFormatError("Update document has no fields to change")
        return changes

    # Formatting

    def _with_defaults(self, doc: Document) -> Document:
        for name, spec in self.schema.fields.items():
            if name not in doc and spec.has_default:
                doc[name] = self._default_for(spec)
        return doc

    def format_document(self, item: Dict[str, Any], projection: Projection = None) -> Document:
        """Decode a wire item, apply schema defaults and the projection."""
        return apply_projection(self._with_defaults(decode_item(item)), projection)

    async def format_documents(
        self,
        items: Sequence[Dict[str, Any]],
        projection: Projection = None,
        populate: Union[str, Sequence[str], None] = None,
        sort: Sort = None,
    ) -> List[Document]:
        """Decode wire items into documents.

        Applies defaults, sorts (on the full documents), applies the
        projection and finally populates the requested references.
        """
        docs = [self._with_defaults(decode_item(item)) for item in items]
        docs = sort_documents(docs, sort)
        docs = [apply_projection(doc, projection) for doc in docs]
        if populate:
            await self.populate(docs, populate)
        return docs

    async def populate(
        self,
        docs: List[Document],
        populate: Union[str, Sequence[str]],
    ) -> List[Document]:
        """Resolve reference and virtual fields of documents in place.

        Args:
            docs: Documents to populate
            populate: Space-separated field names, or a list of them

        Raises:
            DataFormatError: If a field is not a reference, or its model
                is not registered
        """
        fields = populate.split() if isinstance(populate, str) else list(populate)
        resolved = []
        for field_name in fields:
            spec = self.schema.populate_spec(field_name)
            if spec is None:
                raise DataFormatError(
                    f"Path `{field_name}` cannot be populated on model '{self.name}'",
                    field_name=field_name,
                )
            target = self.registry.get(spec.ref) if self.registry is not None else None
            if target is None:
                raise DataFormatError(
                    f"Model '{spec.ref}' referenced by `{field_name}` is not registered",
                    field_name=field_name,
                )
            resolved.append((field_name, spec, target))

        await asyncio.gather(
            *(
                self._populate_field(doc, field_name, spec, target)
                for field_name, spec, target in resolved
                for doc in docs
            )
        )
        return docs

    async def _populate_field(
        self,
        doc: Document,
        field_name: str,
        spec: PopulateSpec,
        target: Model,
    ) -> None:
        local = doc.get(spec.local_field)
        if local is None or local == []:
            doc[field_name] = None if spec.just_one else []
            return

        if isinstance(local, list):
            condition = {spec.foreign_field: {"$in": local}}
        else:
            condition = {spec.foreign_field: local}

        if spec.just_one:
            doc[field_name] = await target.find_one(condition)
        else:
            doc[field_name] = await target.find(condition)

    # Wire helpers

    async def _batch_get(self, ids: Sequence[str]) -> List[Dict[str, Any]]:
        if not ids:
            return []
        requests = Query(self).batch_get_item(ids)
        pages = await asyncio.gather(*(self._batch_get_chunk(r) for r in requests))
        return [item for page in pages for item in page]

    async def _batch_get_chunk(self, request: Dict[str, Any]) -> List[Dict[str, Any]]:
        items = []
        while request["RequestItems"]:
            response = await self._call("batch_get_item", request)
            items.extend(response.get("Responses", {}).get(self.table_name, []))
            request = {"RequestItems": response.get("UnprocessedKeys") or {}}
        return items

    async def _batch_write_chunk(self, request: Dict[str, Any]) -> None:
        while request["RequestItems"]:
            response = await self._call("batch_write_item", request)
            request = {"RequestItems": response.get("UnprocessedItems") or {}}

    async def _delete_ids(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        requests = Query(self).batch_write_item(ids, operation="delete")
        await asyncio.gather(*(self._batch_write_chunk(r) for r in requests))

    async def _scan_items(
        self,
        filter: Dict[str, Any],
        needed: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Scan page by page until exhausted or `needed` matches are collected."""
        query = Query(self)
        request = query.scan(filter)
        if query.matches_nothing:
            return []

        items: List[Dict[str, Any]] = []
        while True:
            response = await self._call("scan", request)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key or (needed is not None and len(items) >= needed):
                return items
            request = {**request, "ExclusiveStartKey": last_key}

    async def _find_via_index(self, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Find the first item matching a filter on indexed fields only."""
        first = next(iter(filter))
        rest = {k: v for k, v in filter.items() if k != first}
        query = Query(self)
        request = query.scan({first: filter[first]}, index_name=f"{first}_1")
        if query.matches_nothing:
            return None

        while True:
            response = await self._call("scan", request)
            ids = [decode(item["_id"]) for item in response.get("Items", [])]
            if ids:
                found = {decode(item["_id"]): item for item in await self._batch_get(ids)}
                for id in ids:
                    item = found.get(id)
                    if item is not None and _matches(decode_item(item), rest):
                        return item
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return None
            request = {**request, "ExclusiveStartKey": last_key}

    # Reads

    async def find(
        self,
        filter: Optional[Dict[str, Any]] = None,
        projection: Projection = None,
        skip: int = 0,
        limit: int = 0,
        sort: Sort = None,
        populate: Union[str, Sequence[str], None] = None,
    ) -> List[Document]:
        """Find all documents matching a filter.

        Args:
            filter: Mongo-style filter; {} matches everything
            projection: Inclusion ("a b") or exclusion ("-a -b") projection
            skip: Number of matches to skip
            limit: Maximum number of documents (0 = no limit)
            sort: "field", "-field" or {"field": 1 | -1}
            populate: Reference fields to resolve

        Returns:
            Matching documents (possibly empty)

        Raises:
            DataFormatError: On invalid options or filter values
            NotImplementedError: On unsupported filter operators
            DatabaseError: On store failure
        """
        filter = filter or {}
        if skip < 0 or limit < 0:
            raise DataFormatError("skip and limit must not be negative")

        if is_point_lookup(filter):
            items = await self._batch_get(point_lookup_ids(filter))
        else:
            # Sorting needs every match before skip/limit apply
            needed = skip + limit if limit and not sort else None
            items = await self._scan_items(filter, needed)

        docs = await self.format_documents(items, projection, sort=sort)
        docs = docs[skip:skip + limit] if limit else docs[skip:]
        if populate:
            await self.populate(docs, populate)
        return docs

    async def find_one(
        self,
        filter: Optional[Dict[str, Any]] = None,
        projection: Projection = None,
        populate: Union[str, Sequence[str], None] = None,
    ) -> Optional[Document]:
        """Find the first document matching a filter.

        Filters on _id and indexed fields only are answered by point
        lookups (through the field's index when _id is absent); any
        other filter scans and takes the first match.

        Returns:
            The document, or None when nothing matches
        """
        filter = filter or {}
        lookup_keys = ["_id", *self.indexes]
        direct = bool(filter) and all(key in lookup_keys for key in filter)

        item = None
        if direct and "_id" in filter and is_point_lookup({"_id": filter["_id"]}):
            rest = {k: v for k, v in filter.items() if k != "_id"}
            for candidate in await self._batch_get(point_lookup_ids({"_id": filter["_id"]})):
                if _matches(decode_item(candidate), rest):
                    item = candidate
                    break
        elif direct and "_id" not in filter:
            item = await self._find_via_index(filter)
        else:
            items = await self._scan_items(filter, needed=1)
            item = items[0] if items else None

        if item is None:
            return None
        doc = self.format_document(item, projection)
        if populate:
            await self.populate([doc], populate)
        return doc

    async def count_documents(self, filter: Optional[Dict[str, Any]] = None) -> int:
        """Count matching documents without reading them."""
        query = Query(self)
        request = query.count(filter or {})
        if query.matches_nothing:
            return 0

        total = 0
        while True:
            response = await self._call("scan", request)
            total += response.get("Count", 0)
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return total
            request = {**request, "ExclusiveStartKey": last_key}

    # Writes

    async def insert_many(
        self,
        docs: Iterable[Document],
        skip_validation: bool = False,
    ) -> List[Document]:
        """Insert documents, rejecting the whole call on any _id collision.

        Args:
            docs: Documents to insert
            skip_validation: Store documents as given (no hooks, defaults
                or checks)

        Returns:
            The inserted documents, as read back from the store

        Raises:
            DataFormatError: If a document fails validation
            PermissionError: If an _id already exists or repeats in docs
            DatabaseError: On store failure (earlier chunks stay written)
        """
        docs = list(docs)
        if not docs:
            return []

        if skip_validation:
            prepared = [{k: v for k, v in doc.items() if v != ""} for doc in docs]
        else:
            prepared = [self.validate(self._run_hooks("save", doc)) for doc in docs]

        ids = []
        for doc in prepared:
            id = doc.get("_id")
            if not isinstance(id, str) or not id:
                raise DataFormatError("Path `_id` is required.", field_name="_id", value=id)
            ids.append(id)

        repeated = [id for id, n in Counter(ids).items() if n > 1]
        if repeated:
            raise PermissionError(
                f"Documents to insert repeat {_describe_ids(repeated)}.",
                document_ids=repeated,
            )

        # Encoding happens here, before any request is sent
        requests = Query(self).batch_write_item(prepared, operation="put")

        existing = [decode(item["_id"]) for item in await self._batch_get(ids)]
        if existing:
            raise PermissionError(
                f"Documents already exist with {_describe_ids(existing)}.",
                document_ids=existing,
            )

        await asyncio.gather(*(self._batch_write_chunk(r) for r in requests))
        logger.info("Documents inserted", extra={"model": self.name, "count": len(ids)})

        found = {decode(item["_id"]): item for item in await self._batch_get(ids)}
        return [self.format_document(found[id]) for id in ids if id in found]

    async def update_one(
        self,
        filter: Dict[str, Any],
        update: Dict[str, Any],
    ) -> Optional[Document]:
        """Update the first document matching a filter.

        Assigning "" or an empty array removes a field.

        Returns:
            The updated document, or None when nothing matched
        """
        changes = self._validate_update(update)

        if list(filter) == ["_id"] and isinstance(filter["_id"], str):
            id = filter["_id"]
        else:
            match = await self.find_one(filter, projection="_id")
            if match is None:
                return None
            id = match["_id"]

        response = await self._call(
            "update_item",
            Query(self).update_item(id, changes),
            tolerate=(CONDITIONAL_CHECK_FAILED,),
        )
        if response is None:
            return None
        return self.format_document(response["Attributes"])

    async def update_many(self, filter: Dict[str, Any], update: Dict[str, Any]) -> int:
        """Apply an update to every matching document.

        Not atomic: each match is updated independently and concurrently.

        Returns:
            Number of documents matched
        """
        changes = self._validate_update(update)
        matches = await self.find(filter, projection="_id")
        await asyncio.gather(*(self.update_one({"_id": doc["_id"]}, changes) for doc in matches))
        logger.info(
            "Documents updated",
            extra={"model": self.name, "matched": len(matches)},
        )
        return len(matches)

    async def delete_many(self, filter: Optional[Dict[str, Any]] = None) -> int:
        """Delete every matching document.

        Returns:
            Number of documents deleted
        """
        filter = filter or {}

        if is_point_lookup(filter):
            items = await self._batch_get(point_lookup_ids(filter))
            ids = [decode(item["_id"]) for item in items]
            await self._delete_ids(ids)
            deleted = len(ids)
        else:
            query = Query(self)
            request = query.scan(filter, keys_only=True)
            deleted = 0
            while not query.matches_nothing:
                response = await self._call("scan", request)
                ids = [decode(item["_id"]) for item in response.get("Items", [])]
                await self._delete_ids(ids)
                deleted += len(ids)
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                request = {**request, "ExclusiveStartKey": last_key}

        logger.info("Documents deleted", extra={"model": self.name, "count": deleted})
        return deleted

    async def _delete_one(self, filter: Dict[str, Any]) -> int:
        match = await self.find_one(filter, projection="_id")
        if match is None:
            return 0
        await self._call("delete_item", Query(self).delete_item(match["_id"]))
        return 1

    async def bulk_write(self, ops: Sequence[Dict[str, Any]]) -> Dict[str, int]:
        """Run insertOne/updateOne/deleteOne/deleteMany operations in order.

        Operations are independent: a failure stops the sequence but does
        not undo earlier operations.

        Example:
            >>> await Org.bulk_write([
            ...     {"insertOne": {"document": {"_id": "a", "name": "A"}}},
            ...     {"updateOne": {"filter": {"_id": "a"}, "update": {"name": "B"}}},
            ...     {"deleteOne": {"filter": {"_id": "a"}}},
            ... ])
            {'inserted_count': 1, 'modified_count': 1, 'deleted_count': 1}
        """
        result = {"inserted_count": 0, "modified_count": 0, "deleted_count": 0}
        for op in ops:
            if not isinstance(op, dict) or len(op) != 1:
                raise DataFormatError(f"Invalid bulk operation: {op!r}")
            kind, body = next(iter(op.items()))

            if kind == "insertOne":
                result["inserted_count"] += len(await self.insert_many([body["document"]]))
            elif kind == "updateOne":
                if await self.update_one(body["filter"], body["update"]) is not None:
                    result["modified_count"] += 1
            elif kind == "deleteOne":
                result["deleted_count"] += await self._delete_one(body["filter"])
            elif kind == "deleteMany":
                result["deleted_count"] += await self.delete_many(body.get("filter"))
            else:
                raise NotImplementedError(
                    f"Bulk operation '{kind}' is not supported", capability=kind
                )
        return result

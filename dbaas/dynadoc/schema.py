"""
Schema definitions for dynadoc models.

A Schema is a declarative description of one document type: field types,
defaults, validators, enumerations, secondary indexes and references to
documents of other models. It is built from a plain definition map in the
style of Mongoose schemas:

    >>> OrgSchema = Schema({
    ...     "_id": {"type": "String", "required": True, "index": False},
    ...     "name": {"type": "String", "required": [True, "Name is required"]},
    ...     "owner": {"type": "String", "ref": "User", "default": None},
    ...     "archived": {"type": "Boolean", "default": False},
    ... })
    >>> OrgSchema.virtual("projects", {"ref": "Project", "localField": "_id",
    ...                                "foreignField": "org", "justOne": False})

Invariants:
    - The table key is always a single String hash key named _id
    - Each indexed field produces exactly one index named <field>_1
    - Declared types are normalized to S, N, M or BOOL
    - add() never overwrites an already declared field

How to change safely:
    - New definition keys must be optional
    - Keep the type normalization table backward compatible; stored data
      depends on it
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, replace
from dataclasses import field as dataclass_field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .errors import NotImplementedError

# Marker for "no default declared"
NO_DEFAULT: Any = object()

DEFAULT_VALIDATOR_MESSAGE = "Validator failed for path `{PATH}` with value `{VALUE}`"

# Events that accept pre hooks
HOOK_EVENTS = ("save",)


class FieldType(Enum):
    """Declared field types, named by their wire type tag."""

    STRING = "S"
    NUMBER = "N"
    MAP = "M"
    BOOLEAN = "BOOL"

    @classmethod
    def from_declared(cls, declared: Any) -> FieldType:
        """Normalize a declared type name or Python type.

        Unrecognized declarations fall back to STRING.
        """
        if isinstance(declared, type):
            declared = declared.__name__
        return _TYPE_NAMES.get(declared, cls.STRING)


_TYPE_NAMES: Dict[str, FieldType] = {
    "String": FieldType.STRING,
    "S": FieldType.STRING,
    "str": FieldType.STRING,
    "Number": FieldType.NUMBER,
    "N": FieldType.NUMBER,
    "int": FieldType.NUMBER,
    "float": FieldType.NUMBER,
    "Decimal": FieldType.NUMBER,
    "Date": FieldType.NUMBER,
    "datetime": FieldType.NUMBER,
    "Object": FieldType.MAP,
    "Mixed": FieldType.MAP,
    "M": FieldType.MAP,
    "dict": FieldType.MAP,
    "Boolean": FieldType.BOOLEAN,
    "BOOL": FieldType.BOOLEAN,
    "bool": FieldType.BOOLEAN,
}

_DATE_NAMES = ("Date", "datetime")


@dataclass(frozen=True)
class Validator:
    """A field validator.

    Attributes:
        check: Predicate returning True when the value is valid
        message: Error message template ({PATH} and {VALUE} are substituted),
            or a callable receiving {"path": ..., "value": ...}
        per_element: On array fields, check each element instead of the list
    """

    check: Callable[[Any], bool]
    message: Union[str, Callable[[Dict[str, Any]], str]] = DEFAULT_VALIDATOR_MESSAGE
    per_element: bool = False

    def error_message(self, path: str, value: Any) -> str:
        """Render the error message for a failed value."""
        if callable(self.message):
            return self.message({"path": path, "value": value})
        return self.message.replace("{PATH}", path).replace("{VALUE}", str(value))


@dataclass(frozen=True)
class PopulateSpec:
    """How a field is resolved into documents of another model.

    Attributes:
        ref: Name of the referenced model
        local_field: Field on this document holding the lookup value
        foreign_field: Field on the referenced documents to match
        just_one: Resolve to a single document instead of a list
    """

    ref: str
    local_field: str
    foreign_field: str = "_id"
    just_one: bool = True

    @classmethod
    def from_options(cls, options: Dict[str, Any]) -> PopulateSpec:
        """Create from Mongoose-style virtual options."""
        if "ref" not in options:
            raise ValueError("Virtual options require 'ref'")
        return cls(
            ref=options["ref"],
            local_field=options.get("localField", options.get("local_field", "_id")),
            foreign_field=options.get("foreignField", options.get("foreign_field", "_id")),
            just_one=bool(options.get("justOne", options.get("just_one", False))),
        )


@dataclass(frozen=True)
class FieldSpec:
    """Normalized definition of a single field.

    Attributes:
        name: Field name (top-level path)
        type: Normalized wire type of the value (or of each element)
        array: Whether the value is an array of `type`
        is_date: Declared as a date; datetimes are stored as epoch milliseconds
        default: Default value or generator, NO_DEFAULT when absent
        required: Whether the field must be present
        required_message: Custom message for a missing required field
        validators: Validators run in order on present values
        enum: Legal values, if restricted
        index: Whether a secondary index is declared on this field
        ref: Referenced model name, if the value is a foreign _id
    """

    name: str
    type: FieldType
    array: bool = False
    is_date: bool = False
    default: Any = NO_DEFAULT
    required: bool = False
    required_message: Optional[str] = None
    validators: Tuple[Validator, ...] = dataclass_field(default_factory=tuple)
    enum: Optional[Tuple[Any, ...]] = None
    index: bool = False
    ref: Optional[str] = None

    @property
    def has_default(self) -> bool:
        """Whether a usable default is declared ("" counts as none)."""
        if self.default is NO_DEFAULT:
            return False
        return not (isinstance(self.default, str) and self.default == "")

    @property
    def null_default(self) -> bool:
        """Whether the declared default is literally null."""
        return self.default is None

    def resolve_default(self) -> Any:
        """Produce the default value, calling it if it is a generator."""
        if callable(self.default):
            return self.default()
        return copy.deepcopy(self.default)

    @classmethod
    def from_definition(cls, name: str, definition: Any) -> FieldSpec:
        """Build a FieldSpec from a definition entry.

        Accepts a full definition map ({"type": ..., "default": ...}), a
        bare type ("String", str), an array type ([String]) or a nested
        object definition (a map without a "type" key).
        """
        if isinstance(definition, list):
            inner = definition[0] if definition else "String"
            element = cls.from_definition(name, inner)
            return replace(element, array=True, index=False)

        if not isinstance(definition, dict):
            return cls(
                name=name,
                type=FieldType.from_declared(definition),
                is_date=_declared_name(definition) in _DATE_NAMES,
            )

        if "type" not in definition:
            # Nested object, stored as a map
            return cls(name=name, type=FieldType.MAP)

        declared = definition["type"]
        if isinstance(declared, list):
            inner_type = declared[0] if declared else "String"
            element = cls.from_definition(name, {**definition, "type": inner_type})
            return replace(element, array=True)

        required, required_message = _parse_flag(definition.get("required", False))
        enum = definition.get("enum")

        return cls(
            name=name,
            type=FieldType.from_declared(declared),
            is_date=_declared_name(declared) in _DATE_NAMES,
            default=definition.get("default", NO_DEFAULT),
            required=required,
            required_message=required_message,
            validators=tuple(_parse_validators(definition)),
            enum=tuple(enum) if enum is not None else None,
            index=bool(definition.get("index", False)),
            ref=definition.get("ref"),
        )


def _declared_name(declared: Any) -> Any:
    if isinstance(declared, type):
        return declared.__name__
    return declared


def _parse_flag(value: Any) -> Tuple[bool, Optional[str]]:
    """Parse `true` or `[true, message]` style options."""
    if isinstance(value, (list, tuple)):
        flag = bool(value[0]) if value else False
        message = value[1] if len(value) > 1 else None
        return flag, message
    return bool(value), None


def _parse_limit(value: Any) -> Tuple[Any, Optional[str]]:
    if isinstance(value, (list, tuple)):
        return value[0], value[1] if len(value) > 1 else None
    return value, None


def _to_validator(entry: Any) -> Validator:
    if isinstance(entry, Validator):
        return entry
    if callable(entry):
        return Validator(check=entry)
    if isinstance(entry, dict):
        return Validator(
            check=entry["validator"],
            message=entry.get("message", DEFAULT_VALIDATOR_MESSAGE),
        )
    if isinstance(entry, (list, tuple)) and entry and callable(entry[0]):
        return Validator(
            check=entry[0],
            message=entry[1] if len(entry) > 1 else DEFAULT_VALIDATOR_MESSAGE,
        )
    raise ValueError(f"Invalid validator declaration: {entry!r}")


def _parse_validators(definition: Dict[str, Any]) -> List[Validator]:
    """Collect validators from validate/match/minlength/maxlength options."""
    validators: List[Validator] = []

    if "match" in definition:
        pattern, message = _parse_limit(definition["match"])
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        validators.append(
            Validator(
                check=lambda v, _r=regex: v is None or bool(_r.search(v)),
                message=message or "Path `{PATH}` is invalid ({VALUE}).",
                per_element=True,
            )
        )

    if "minlength" in definition:
        limit, message = _parse_limit(definition["minlength"])
        validators.append(
            Validator(
                check=lambda v, _n=limit: v is None or len(v) >= _n,
                message=message or f"Path `{{PATH}}` is shorter than the minimum length ({limit}).",
                per_element=True,
            )
        )

    if "maxlength" in definition:
        limit, message = _parse_limit(definition["maxlength"])
        validators.append(
            Validator(
                check=lambda v, _n=limit: v is None or len(v) <= _n,
                message=message or f"Path `{{PATH}}` is longer than the maximum length ({limit}).",
                per_element=True,
            )
        )

    declared = definition.get("validate")
    if declared is not None:
        if isinstance(declared, list):
            validators.extend(_to_validator(entry) for entry in declared)
        else:
            validators.append(_to_validator(declared))

    return validators


class Schema:
    """Declarative description of a document type.

    Attributes:
        fields: Field specs by name, in declaration order
        populate: Reference fields resolvable by population
        virtuals: Non-persisted fields populated at read time
        statics: Functions exposed on every model built from this schema
        methods: Document functions exposed on every model built from this schema
        hooks: Pre hooks by event name
        options: Free-form schema options
    """

    def __init__(
        self,
        definition: Optional[Dict[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.options: Dict[str, Any] = dict(options or {})
        self.fields: Dict[str, FieldSpec] = {}
        self.populate: Dict[str, PopulateSpec] = {}
        self.virtuals: Dict[str, PopulateSpec] = {}
        self.statics: Dict[str, Callable[..., Any]] = {}
        self.methods: Dict[str, Callable[..., Any]] = {}
        self.hooks: Dict[str, List[Callable[..., Any]]] = {}

        definition = dict(definition or {})
        if "_id" not in definition:
            definition = {"_id": {"type": "String", "required": True}, **definition}
        self.add(definition)

    def add(self, fields: Dict[str, Any]) -> Schema:
        """Merge additional field definitions.

        Fields that are already declared are left untouched.

        Returns:
            This schema, for chaining
        """
        for name, definition in fields.items():
            if name in self.fields:
                continue
            spec = FieldSpec.from_definition(name, definition)
            self.fields[name] = spec
            if spec.ref:
                self.populate[name] = PopulateSpec(
                    ref=spec.ref,
                    local_field=name,
                    foreign_field="_id",
                    just_one=not spec.array,
                )
        return self

    def virtual(self, name: str, options: Dict[str, Any]) -> PopulateSpec:
        """Declare a non-persisted field populated from a related model.

        Args:
            name: Name of the virtual field
            options: {"ref", "localField", "foreignField", "justOne"}

        Returns:
            The resulting PopulateSpec
        """
        spec = PopulateSpec.from_options(options)
        self.virtuals[name] = spec
        return spec

    def static(self, name: str, fn: Callable[..., Any]) -> None:
        """Attach a function exposed through Model.statics.

        The function receives the model as its first argument.
        """
        self.statics[name] = fn

    def method(self, name: str, fn: Callable[..., Any]) -> None:
        """Attach a document function exposed through Model.methods.

        The function receives the model and the document as its first
        two arguments.
        """
        self.methods[name] = fn

    def pre(self, event: str, fn: Callable[..., Any]) -> None:
        """Register a hook run before an event.

        "save" hooks run on every document passed to create_document()
        or insert_many(), before validation. A hook receives the
        document and either modifies it in place or returns a
        replacement.

        Raises:
            NotImplementedError: For events other than "save"
        """
        if event not in HOOK_EVENTS:
            raise NotImplementedError(
                f"Hooks on '{event}' are not supported", capability=f"pre:{event}"
            )
        self.hooks.setdefault(event, []).append(fn)

    def index(self, fields: Union[str, List[str], Dict[str, Any]]) -> Schema:
        """Declare secondary indexes on existing fields.

        Each named field gets its own single-key index; a compound
        declaration such as {"org": 1, "name": 1} yields org_1 and name_1.

        Args:
            fields: Field name, list of names, or {name: 1 | -1 | "text"}

        Raises:
            ValueError: If a field is undeclared, an array or an object
            NotImplementedError: For text indexes

        Returns:
            This schema, for chaining
        """
        if isinstance(fields, str):
            fields = {fields: 1}
        elif not isinstance(fields, dict):
            fields = {name: 1 for name in fields}

        for name, kind in fields.items():
            if kind == "text":
                raise NotImplementedError(
                    f"Text index on `{name}` is not supported", capability="text"
                )
            spec = self.fields.get(name)
            if spec is None:
                raise ValueError(f"Cannot index undeclared field `{name}`")
            if spec.array or spec.type == FieldType.MAP:
                raise ValueError(f"Cannot index field `{name}` of type {spec.type.name.title()}")

        for name in fields:
            self.fields[name] = replace(self.fields[name], index=True)
        return self

    def plugin(self, fn: Callable[..., Any], options: Optional[Dict[str, Any]] = None) -> Schema:
        """Apply a plugin: fn(schema, options)."""
        fn(self, options)
        return self

    def get_field(self, name: str) -> Optional[FieldSpec]:
        """Get a field spec by name."""
        return self.fields.get(name)

    def populate_spec(self, name: str) -> Optional[PopulateSpec]:
        """Get how a reference or virtual field is populated."""
        return self.populate.get(name) or self.virtuals.get(name)

    @property
    def indexes(self) -> List[str]:
        """Names of fields with a declared secondary index."""
        return [name for name, spec in self.fields.items() if spec.index and name != "_id"]

    @property
    def key_schema(self) -> List[Dict[str, str]]:
        return [{"AttributeName": "_id", "KeyType": "HASH"}]

    @property
    def attribute_definitions(self) -> List[Dict[str, str]]:
        definitions = [{"AttributeName": "_id", "AttributeType": "S"}]
        for name in self.indexes:
            attr_type = "S" if self.fields[name].type == FieldType.STRING else "N"
            definitions.append({"AttributeName": name, "AttributeType": attr_type})
        return definitions

    def index_declaration(self, name: str) -> Dict[str, Any]:
        """Secondary index declaration for one indexed field."""
        key_type = "HASH" if self.fields[name].type == FieldType.STRING else "RANGE"
        return {
            "IndexName": f"{name}_1",
            "KeySchema": [{"AttributeName": name, "KeyType": key_type}],
            "Projection": {"ProjectionType": "KEYS_ONLY"},
        }

    @property
    def global_secondary_indexes(self) -> List[Dict[str, Any]]:
        return [self.index_declaration(name) for name in self.indexes]

    def table_definition(self, table_name: str) -> Dict[str, Any]:
        """CreateTable request body for a table backed by this schema."""
        definition: Dict[str, Any] = {
            "TableName": table_name,
            "AttributeDefinitions": self.attribute_definitions,
            "KeySchema": self.key_schema,
            "BillingMode": "PAY_PER_REQUEST",
        }
        if self.indexes:
            definition["GlobalSecondaryIndexes"] = self.global_secondary_indexes
        return definition


def to_epoch_millis(value: Union[datetime, date]) -> int:
    """Convert a date/datetime to epoch milliseconds.

    Naive values and plain dates are read as UTC.
    """
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)

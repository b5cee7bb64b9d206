"""
Unit tests for schema definitions.

Tests cover:
- Type normalization
- Field options (required, default, enum, validators)
- Index and table declarations
- References, virtuals, statics and plugins
- Save hooks, document methods and late index declarations
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from dbaas.dynadoc.errors import NotImplementedError
from dbaas.dynadoc.schema import (
    NO_DEFAULT,
    FieldSpec,
    FieldType,
    PopulateSpec,
    Schema,
    Validator,
    to_epoch_millis,
)


class TestFieldType:
    """Tests for declared type normalization."""

    @pytest.mark.parametrize(
        "declared,expected",
        [
            ("String", FieldType.STRING),
            ("S", FieldType.STRING),
            ("Number", FieldType.NUMBER),
            ("N", FieldType.NUMBER),
            ("Date", FieldType.NUMBER),
            ("Object", FieldType.MAP),
            ("M", FieldType.MAP),
            ("Mixed", FieldType.MAP),
            ("Boolean", FieldType.BOOLEAN),
            ("BOOL", FieldType.BOOLEAN),
            (str, FieldType.STRING),
            (int, FieldType.NUMBER),
            (dict, FieldType.MAP),
            (bool, FieldType.BOOLEAN),
            ("Whatever", FieldType.STRING),
        ],
    )
    def test_from_declared(self, declared, expected):
        assert FieldType.from_declared(declared) == expected


class TestFieldSpec:
    """Tests for FieldSpec.from_definition."""

    def test_bare_type(self):
        spec = FieldSpec.from_definition("name", "String")
        assert spec.type == FieldType.STRING
        assert spec.default is NO_DEFAULT
        assert not spec.required

    def test_array_type(self):
        spec = FieldSpec.from_definition("tags", {"type": ["String"], "default": []})
        assert spec.array
        assert spec.type == FieldType.STRING

    def test_list_definition(self):
        spec = FieldSpec.from_definition("scores", ["Number"])
        assert spec.array
        assert spec.type == FieldType.NUMBER

    def test_nested_object_is_map(self):
        spec = FieldSpec.from_definition("custom", {"color": "String"})
        assert spec.type == FieldType.MAP

    def test_required_with_message(self):
        spec = FieldSpec.from_definition(
            "name", {"type": "String", "required": [True, "Name is required"]}
        )
        assert spec.required
        assert spec.required_message == "Name is required"

    def test_empty_string_default_is_no_default(self):
        spec = FieldSpec.from_definition("name", {"type": "String", "default": ""})
        assert not spec.has_default

    def test_null_default(self):
        spec = FieldSpec.from_definition("owner", {"type": "String", "default": None})
        assert spec.has_default
        assert spec.null_default

    def test_generator_default(self):
        spec = FieldSpec.from_definition("n", {"type": "Number", "default": lambda: 7})
        assert spec.resolve_default() == 7

    def test_mutable_default_is_copied(self):
        spec = FieldSpec.from_definition("meta", {"type": "Object", "default": {"a": 1}})
        first = spec.resolve_default()
        first["a"] = 2
        assert spec.resolve_default() == {"a": 1}

    def test_date_flag(self):
        spec = FieldSpec.from_definition("createdOn", {"type": "Date"})
        assert spec.is_date
        assert spec.type == FieldType.NUMBER

    def test_validate_dict(self):
        spec = FieldSpec.from_definition(
            "name",
            {
                "type": "String",
                "validate": {"validator": lambda v: v.islower(), "message": "{PATH} must be lower"},
            },
        )
        (validator,) = spec.validators
        assert not validator.check("ABC")
        assert validator.error_message("name", "ABC") == "name must be lower"

    def test_validate_list(self):
        spec = FieldSpec.from_definition(
            "name",
            {"type": "String", "validate": [lambda v: True, (lambda v: False, "always fails")]},
        )
        assert len(spec.validators) == 2
        assert spec.validators[1].message == "always fails"

    def test_match_and_lengths(self):
        spec = FieldSpec.from_definition(
            "slug",
            {"type": "String", "match": r"^[a-z]+$", "minlength": 2, "maxlength": [4, "Too long"]},
        )
        match, minimum, maximum = spec.validators
        assert match.check("abc") and not match.check("ab1")
        assert minimum.check("ab") and not minimum.check("a")
        assert maximum.check("abcd") and not maximum.check("abcde")
        assert maximum.error_message("slug", "abcde") == "Too long"
        assert all(v.per_element for v in spec.validators)

    def test_custom_validator_checks_whole_value(self):
        spec = FieldSpec.from_definition("tags", {"type": ["String"], "validate": bool})
        assert not spec.validators[0].per_element

    def test_invalid_validator(self):
        with pytest.raises(ValueError):
            FieldSpec.from_definition("x", {"type": "String", "validate": 42})

    def test_callable_message(self):
        validator = Validator(check=lambda v: False, message=lambda props: f"bad {props['path']}")
        assert validator.error_message("name", 1) == "bad name"


class TestSchema:
    """Tests for Schema."""

    @pytest.fixture
    def schema(self):
        return Schema(
            {
                "_id": {"type": "String", "required": True},
                "name": {"type": "String", "index": True},
                "rank": {"type": "Number", "index": True},
                "org": {"type": "String", "ref": "Organization", "default": None},
                "members": {"type": ["String"], "ref": "User", "default": []},
            }
        )

    def test_implicit_id(self):
        schema = Schema({"name": "String"})
        assert list(schema.fields) == ["_id", "name"]
        assert schema.fields["_id"].required

    def test_key_schema(self, schema):
        assert schema.key_schema == [{"AttributeName": "_id", "KeyType": "HASH"}]

    def test_indexes(self, schema):
        assert schema.indexes == ["name", "rank"]

    def test_attribute_definitions(self, schema):
        assert schema.attribute_definitions == [
            {"AttributeName": "_id", "AttributeType": "S"},
            {"AttributeName": "name", "AttributeType": "S"},
            {"AttributeName": "rank", "AttributeType": "N"},
        ]

    def test_index_declarations(self, schema):
        """String fields are hash keys, others range keys; keys-only."""
        assert schema.global_secondary_indexes == [
            {
                "IndexName": "name_1",
                "KeySchema": [{"AttributeName": "name", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "KEYS_ONLY"},
            },
            {
                "IndexName": "rank_1",
                "KeySchema": [{"AttributeName": "rank", "KeyType": "RANGE"}],
                "Projection": {"ProjectionType": "KEYS_ONLY"},
            },
        ]

    def test_table_definition(self, schema):
        definition = schema.table_definition("orgs")
        assert definition["TableName"] == "orgs"
        assert definition["BillingMode"] == "PAY_PER_REQUEST"
        assert len(definition["GlobalSecondaryIndexes"]) == 2

    def test_table_definition_without_indexes(self):
        definition = Schema({"name": "String"}).table_definition("plain")
        assert "GlobalSecondaryIndexes" not in definition

    def test_populate_map(self, schema):
        assert schema.populate["org"] == PopulateSpec(
            ref="Organization", local_field="org", foreign_field="_id", just_one=True
        )
        assert schema.populate["members"].just_one is False

    def test_add_does_not_overwrite(self, schema):
        schema.add({"name": {"type": "Number"}, "extra": {"type": "Boolean"}})
        assert schema.fields["name"].type == FieldType.STRING
        assert schema.fields["extra"].type == FieldType.BOOLEAN

    def test_virtual(self, schema):
        spec = schema.virtual(
            "projects",
            {"ref": "Project", "localField": "_id", "foreignField": "org", "justOne": False},
        )
        assert schema.populate_spec("projects") is spec
        assert spec.foreign_field == "org"
        assert "projects" not in schema.fields

    def test_virtual_requires_ref(self, schema):
        with pytest.raises(ValueError):
            schema.virtual("broken", {"localField": "_id"})

    def test_static(self, schema):
        def shout(model, text):
            return text.upper()

        schema.static("shout", shout)
        assert schema.statics["shout"] is shout

    def test_plugin(self, schema):
        def extensions(target, options):
            target.add({"archived": {"type": "Boolean", "default": options["archived"]}})

        assert schema.plugin(extensions, {"archived": False}) is schema
        assert schema.fields["archived"].default is False

    def test_method(self, schema):
        def label(model, doc):
            return doc["name"]

        schema.method("label", label)
        assert schema.methods["label"] is label
        assert "label" not in schema.statics

    def test_pre_save_hooks_keep_order(self, schema):
        first, second = (lambda doc: None), (lambda doc: doc)

        schema.pre("save", first)
        schema.pre("save", second)
        assert schema.hooks["save"] == [first, second]

    def test_pre_unsupported_event(self, schema):
        with pytest.raises(NotImplementedError) as exc_info:
            schema.pre("remove", lambda doc: None)
        assert exc_info.value.capability == "pre:remove"
        assert schema.hooks == {}

    def test_plugin_registers_hook(self, schema):
        def created_on(target, options):
            target.add({"createdOn": {"type": "Date"}})
            target.pre("save", lambda doc: doc.setdefault("createdOn", 0))

        schema.plugin(created_on)
        assert schema.fields["createdOn"].is_date
        assert len(schema.hooks["save"]) == 1

    def test_index_marks_fields(self, schema):
        assert schema.index({"org": 1, "name": -1}) is schema
        assert schema.indexes == ["name", "rank", "org"]
        assert schema.global_secondary_indexes[-1]["IndexName"] == "org_1"

    def test_index_accepts_names(self):
        schema = Schema({"a": "String", "b": "Number"})
        schema.index("a")
        schema.index(["b"])
        assert schema.indexes == ["a", "b"]

    def test_index_rejects_bad_fields(self, schema):
        with pytest.raises(ValueError):
            schema.index({"missing": 1})
        with pytest.raises(ValueError):
            schema.index({"members": 1})
        with pytest.raises(NotImplementedError):
            schema.index({"name": "text", "org": "text"})
        assert "org" not in schema.indexes


class TestToEpochMillis:
    """Tests for date conversion."""

    def test_aware_datetime(self):
        moment = datetime(2020, 1, 1, tzinfo=timezone.utc)
        assert to_epoch_millis(moment) == 1577836800000

    def test_naive_values_are_utc(self):
        assert to_epoch_millis(datetime(2020, 1, 1)) == 1577836800000
        assert to_epoch_millis(date(2020, 1, 1)) == 1577836800000

    def test_offset_is_honored(self):
        moment = datetime(2020, 1, 1, 2, tzinfo=timezone(timedelta(hours=2)))
        assert to_epoch_millis(moment) == 1577836800000

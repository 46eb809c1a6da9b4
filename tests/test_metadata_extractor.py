"""Tests for fingerprint extraction from decompiled binary metadata."""

import json
import logging

import pytest

from extract.assembly import MetadataExtractor, render_reference
from extract.declarations import (
    Accessor,
    CompilationUnit,
    EnumDeclaration,
    FieldDeclaration,
    MethodDeclaration,
    NamespaceDeclaration,
    Parameter,
    ParsedSourceFile,
    PredefinedType,
    PropertyDeclaration,
    TypeDeclaration,
)
from extract.metadata import (
    EventDefinition,
    FieldAttributes,
    FieldDefinition,
    MemberAttributes,
    MetadataFormatError,
    MetadataNotFoundError,
    MethodAttributes,
    MethodDefinition,
    ModuleDefinition,
    ParameterDefinition,
    ParamAttributes,
    PropertyDefinition,
    TypeAttributes,
    TypeDefinition,
    TypeReference,
    read_metadata_dump,
)
from extract.source import SourceExtractor
from fingerprint.models import ClassKind, EnumRecord, Modifier, ParameterModifier, ProtectionLevel

OBJECT = TypeReference("Object", "System")
VALUE_TYPE = TypeReference("ValueType", "System")
ENUM = TypeReference("Enum", "System")
DELEGATE = TypeReference("MulticastDelegate", "System")
VOID = TypeReference("Void", "System")
INT = TypeReference("Int32", "System")
STRING = TypeReference("String", "System")
SINGLE = TypeReference("Single", "System")

PUBLIC_METHOD = int(MemberAttributes.PUBLIC)
ACCESSOR = int(MemberAttributes.PUBLIC | MethodAttributes.SPECIAL_NAME)


def _outer_module():
    outer = TypeDefinition(
        token=1, namespace="N", name="Outer", attributes=int(TypeAttributes.PUBLIC), base_type=OBJECT,
        fields=[FieldDefinition("<Count>k__BackingField", int(MemberAttributes.PRIVATE), INT)],
        properties=[
            PropertyDefinition(
                "Count", INT,
                getter=MethodDefinition("get_Count", ACCESSOR, INT),
                setter=MethodDefinition(
                    "set_Count", int(MemberAttributes.PRIVATE | MethodAttributes.SPECIAL_NAME), VOID,
                    [ParameterDefinition("value", INT)],
                ),
            )
        ],
        methods=[
            MethodDefinition("get_Count", ACCESSOR, INT),
            MethodDefinition("Run", PUBLIC_METHOD, VOID, [ParameterDefinition("name", STRING)]),
            MethodDefinition(".ctor", int(MemberAttributes.PUBLIC | MethodAttributes.RT_SPECIAL_NAME), VOID),
        ],
    )
    mode = TypeDefinition(
        token=2, namespace="", name="Mode",
        attributes=int(TypeAttributes.NESTED_PUBLIC | TypeAttributes.SEALED),
        declaring_type=1, base_type=ENUM,
        fields=[
            FieldDefinition("value__", int(MemberAttributes.PUBLIC), INT),
            FieldDefinition("On", int(MemberAttributes.PUBLIC | MemberAttributes.STATIC | FieldAttributes.LITERAL), INT),
            FieldDefinition("Off", int(MemberAttributes.PUBLIC | MemberAttributes.STATIC | FieldAttributes.LITERAL), INT),
        ],
    )
    inner = TypeDefinition(
        token=3, namespace="", name="Inner", attributes=int(TypeAttributes.NESTED_PUBLIC),
        declaring_type=1, base_type=OBJECT,
        fields=[FieldDefinition("Speed", int(MemberAttributes.PUBLIC | FieldAttributes.INIT_ONLY), SINGLE)],
    )
    closure = TypeDefinition(
        token=4, namespace="", name="<>c", attributes=int(TypeAttributes.NESTED_PRIVATE),
        declaring_type=1, base_type=OBJECT,
        custom_attributes=["System.Runtime.CompilerServices.CompilerGeneratedAttribute"],
    )
    return ModuleDefinition("Unity.Sample.dll", [outer, mode, inner, closure])


def _outer_source():
    outer = TypeDeclaration(
        "class", ("public",), "Outer",
        members=[
            EnumDeclaration(("public",), "Mode", ["On", "Off"]),
            PropertyDeclaration(
                ("public",), PredefinedType("int"), "Count",
                [Accessor("get"), Accessor("set", ("private",))],
            ),
            MethodDeclaration(
                ("public",), PredefinedType("void"), "Run",
                [Parameter(PredefinedType("string"), "name")], has_body=True,
            ),
            TypeDeclaration(
                "class", ("public",), "Inner",
                members=[FieldDeclaration(("public", "readonly"), PredefinedType("float"), ["Speed"])],
            ),
        ],
    )
    unit = CompilationUnit([NamespaceDeclaration("N", [outer])])
    extractor = SourceExtractor("com.unity.sample", type_aliases={})
    extractor.add_file(ParsedSourceFile("Runtime/Outer.cs", unit))
    return extractor.finalize()


def _extract(*types):
    return MetadataExtractor(type_aliases={}).extract("com.unity.sample", ModuleDefinition("Sample", list(types)))


class TestMetadataExtractor:
    """Tests for MetadataExtractor."""

    def test_nested_naming_and_enum_attachment(self):
        fingerprint = MetadataExtractor(type_aliases={}).extract("com.unity.sample", _outer_module())
        assert set(fingerprint.classes) == {"N.Outer", "N.Outer.Inner"}
        inner = fingerprint.classes["N.Outer.Inner"]
        assert inner.name == "Outer.Inner"
        assert inner.namespace == "N"
        outer = fingerprint.classes["N.Outer"]
        assert [(e.name, e.values) for e in outer.enums] == [("Mode", ["On", "Off"])]
        assert fingerprint.global_enums == {}

    def test_backing_fields_ctors_and_accessors_skipped(self):
        outer = MetadataExtractor(type_aliases={}).extract("com.unity.sample", _outer_module()).classes["N.Outer"]
        assert outer.fields == []
        assert [m.name for m in outer.methods] == ["Run"]
        count = outer.properties[0]
        assert (count.getter, count.setter) == (ProtectionLevel.PUBLIC, ProtectionLevel.PRIVATE)

    def test_matches_source_extraction(self):
        from_metadata = MetadataExtractor(type_aliases={}).extract("com.unity.sample", _outer_module())
        assert from_metadata == _outer_source()

    def test_struct_kind_and_readonly(self):
        point = TypeDefinition(
            token=1, namespace="", name="Point",
            attributes=int(TypeAttributes.PUBLIC | TypeAttributes.SEALED), base_type=VALUE_TYPE,
            custom_attributes=["System.Runtime.CompilerServices.IsReadOnlyAttribute"],
        )
        record = _extract(point).classes["Point"]
        assert record.kind == ClassKind.STRUCT
        assert record.modifier == Modifier.READONLY
        assert record.inheritors == []

    def test_interface_members_abstract(self):
        shape = TypeDefinition(
            token=1, namespace="Geo", name="IShape",
            attributes=int(TypeAttributes.PUBLIC | TypeAttributes.INTERFACE | TypeAttributes.ABSTRACT),
            methods=[
                MethodDefinition(
                    "Area", int(MemberAttributes.PUBLIC | MethodAttributes.VIRTUAL | MethodAttributes.ABSTRACT), SINGLE
                )
            ],
        )
        record = _extract(shape).classes["Geo.IShape"]
        assert record.kind == ClassKind.INTERFACE
        assert record.modifier == Modifier.NONE
        assert record.methods[0].modifier == Modifier.ABSTRACT

    def test_delegate_keeps_only_invoke(self):
        callback = TypeDefinition(
            token=1, namespace="N", name="Callback",
            attributes=int(TypeAttributes.PUBLIC | TypeAttributes.SEALED), base_type=DELEGATE,
            methods=[
                MethodDefinition(".ctor", int(MemberAttributes.PUBLIC | MethodAttributes.RT_SPECIAL_NAME), VOID),
                MethodDefinition(
                    "Invoke", int(MemberAttributes.PUBLIC | MethodAttributes.VIRTUAL), VOID,
                    [ParameterDefinition("code", INT)],
                ),
                MethodDefinition("BeginInvoke", int(MemberAttributes.PUBLIC | MethodAttributes.VIRTUAL), OBJECT),
            ],
        )
        record = _extract(callback).classes["N.Callback"]
        assert record.kind == ClassKind.DELEGATE
        assert record.modifier == Modifier.NONE
        assert [m.name for m in record.methods] == ["Invoke"]

    def test_static_class_and_generic_name(self):
        helpers = TypeDefinition(
            token=1, namespace="", name="Pool`1",
            attributes=int(TypeAttributes.PUBLIC | TypeAttributes.ABSTRACT | TypeAttributes.SEALED),
            base_type=OBJECT, generic_parameters=["T"],
        )
        record = _extract(helpers).classes["Pool<T>"]
        assert record.modifier == Modifier.STATIC

    def test_indexer_and_out_parameter(self):
        table = TypeDefinition(
            token=1, namespace="", name="Table", attributes=int(TypeAttributes.PUBLIC), base_type=OBJECT,
            properties=[
                PropertyDefinition(
                    "Item", STRING,
                    getter=MethodDefinition("get_Item", ACCESSOR, STRING, [ParameterDefinition("index", INT)]),
                    parameters=[ParameterDefinition("index", INT)],
                )
            ],
            methods=[
                MethodDefinition(
                    "TryGet", PUBLIC_METHOD, TypeReference("Boolean", "System"),
                    [
                        ParameterDefinition("index", INT),
                        ParameterDefinition(
                            "value", TypeReference("String&", "System", element_type=STRING, shape="byref"),
                            int(ParamAttributes.OUT),
                        ),
                    ],
                )
            ],
        )
        record = _extract(table).classes["Table"]
        assert record.properties == []
        indexer = record.indexers[0]
        assert indexer.has_getter and not indexer.has_setter
        assert indexer.protection == ProtectionLevel.PUBLIC
        value = record.methods[0].parameters[1]
        assert value.modifier == ParameterModifier.OUT
        assert value.type == "String"

    def test_implied_interfaces_pruned(self):
        enumerable = TypeReference("IEnumerable", "System.Collections")
        generic = TypeReference(
            "IEnumerable`1", "System.Collections.Generic",
            generic_arguments=[INT], interfaces=[enumerable],
        )
        bag = TypeDefinition(
            token=1, namespace="", name="Bag", attributes=int(TypeAttributes.PUBLIC), base_type=OBJECT,
            interfaces=[generic, enumerable],
        )
        assert _extract(bag).classes["Bag"].inheritors == ["IEnumerable<Int32>"]

    def test_top_level_enum_is_global(self):
        color = TypeDefinition(
            token=1, namespace="N", name="Color", attributes=int(TypeAttributes.PUBLIC | TypeAttributes.SEALED),
            base_type=ENUM, fields=[FieldDefinition("Red", int(MemberAttributes.PUBLIC), INT)],
        )
        fingerprint = _extract(color)
        assert fingerprint.classes == {}
        assert fingerprint.global_enums["N.Color"].values == ["Red"]

    def test_orphan_enum_attached_by_name_segment(self):
        fingerprint = _extract(
            TypeDefinition(token=1, namespace="N", name="Outer", attributes=int(TypeAttributes.PUBLIC), base_type=OBJECT)
        )
        mode = EnumRecord(protection=ProtectionLevel.PUBLIC, name="Mode", values=["On", "Off"])

        MetadataExtractor._attach_orphan_enums(fingerprint, {"Legacy.Outer": ("Outer", [mode])})

        assert fingerprint.classes["N.Outer"].enums == [mode]

    def test_unplaceable_orphan_logs_and_stops_attachment(self, caplog):
        fingerprint = _extract(
            TypeDefinition(token=1, namespace="N", name="Outer", attributes=int(TypeAttributes.PUBLIC), base_type=OBJECT)
        )
        lost = EnumRecord(protection=ProtectionLevel.PUBLIC, name="Lost", values=["A"])
        mode = EnumRecord(protection=ProtectionLevel.PUBLIC, name="Mode", values=["On"])

        with caplog.at_level(logging.ERROR, logger="extract.assembly"):
            MetadataExtractor._attach_orphan_enums(
                fingerprint, {"X.Missing": ("Missing", [lost]), "N.Outer": ("Outer", [mode])}
            )

        assert fingerprint.classes["N.Outer"].enums == []
        assert any(
            record.levelno == logging.ERROR and "X.Missing" in record.getMessage() for record in caplog.records
        )

    def test_event_fields_and_finalizer_skipped(self):
        action = TypeReference("Action", "System")
        emitter = TypeDefinition(
            token=1, namespace="N", name="Emitter", attributes=int(TypeAttributes.PUBLIC), base_type=OBJECT,
            fields=[
                FieldDefinition("Changed", int(MemberAttributes.PRIVATE), action),
                FieldDefinition("Count", int(MemberAttributes.PUBLIC), INT),
            ],
            methods=[
                MethodDefinition("add_Changed", ACCESSOR, VOID, [ParameterDefinition("value", action)]),
                MethodDefinition(
                    "Finalize", int(MemberAttributes.FAMILY | MethodAttributes.VIRTUAL), VOID
                ),
                MethodDefinition("Emit", PUBLIC_METHOD, VOID),
            ],
            events=[EventDefinition("Changed", action)],
        )
        record = _extract(emitter).classes["N.Emitter"]
        assert [f.name for f in record.fields] == ["Count"]
        assert [m.name for m in record.methods] == ["Emit"]


class TestRenderReference:
    """Tests for metadata type text."""

    def test_generic_and_array(self):
        ref = TypeReference(
            "List`1", "System.Collections.Generic",
            generic_arguments=[TypeReference("Int32[]", "System", element_type=INT, shape="array")],
        )
        assert render_reference(ref) == "List<Int32[]>"

    def test_pointer(self):
        assert render_reference(TypeReference("Byte*", "System", element_type=TypeReference("Byte"), shape="pointer")) == "Byte*"


class TestMetadataDump:
    """Tests for the metadata dump reader."""

    def test_missing_dump(self, tmp_path):
        with pytest.raises(MetadataNotFoundError):
            read_metadata_dump(str(tmp_path / "Unity.Sample.dll"))

    def test_invalid_dump(self, tmp_path):
        binary = tmp_path / "Unity.Sample.dll"
        (tmp_path / "Unity.Sample.dll.json").write_text(json.dumps({"types": [{"name": "X"}]}), encoding="utf-8")
        with pytest.raises(MetadataFormatError):
            read_metadata_dump(str(binary))

    def test_reads_dump(self, tmp_path):
        binary = tmp_path / "Unity.Sample.dll"
        payload = {
            "types": [
                {
                    "token": 1,
                    "namespace": "N",
                    "name": "Widget",
                    "attributes": 1,
                    "base_type": {"name": "Object", "namespace": "System"},
                    "methods": [
                        {"name": "Run", "attributes": 6, "return_type": {"name": "Void", "namespace": "System"}}
                    ],
                    "events": [{"name": "Changed", "type": {"name": "Action", "namespace": "System"}}],
                }
            ]
        }
        (tmp_path / "Unity.Sample.dll.json").write_text(json.dumps(payload), encoding="utf-8")
        module = read_metadata_dump(str(binary))
        assert module.name == "Unity.Sample.dll"
        assert module.types[0].methods[0].name == "Run"
        assert module.types[0].events == [EventDefinition("Changed", TypeReference("Action", "System"))]

import json

import pytest

from cgraph.cgraph_datatypes import CommandResult, Element
from cgraph.cgraph_serialize import serialize, deserialize, detect_format


def test_json_roundtrip():
    value = {"a": 1, "b": [1, 2, "x"], "c": {"d": True}}
    s = serialize(value, fmt="json")
    out = deserialize(s)  # JSON is sniffed from leading "{"
    assert out == value


def test_yaml_roundtrip_from_path():
    value = {"a": 1, "b": ["x", "y"], "c": {"d": 2}}
    s = serialize(value, fmt="yaml")
    out = deserialize(s, path="config.yml")
    assert out == value


def test_yaml_keeps_key_order():
    s = serialize({"z": 1, "a": 2}, fmt="yaml")
    assert s.index("z:") < s.index("a:")


def test_toml_roundtrip_with_fmt():
    value = {"title": "TOML Example", "owner": {"name": "Tom"}}
    s = serialize(value, fmt="toml")
    out = deserialize(s, fmt="toml")  # TOML requires explicit fmt or a path
    assert out == value


def test_toml_wraps_non_mapping():
    s = serialize([1, 2], fmt="toml")
    assert deserialize(s, fmt="toml") == {"cgraph": [1, 2]}


def test_xml_roundtrip_with_fmt():
    # Use string values to avoid XML numeric typing ambiguity
    value = {"root": {"item": ["A", "B"], "note": "x"}}
    s = serialize(value, fmt="xml")
    out = deserialize(s, fmt="xml")
    assert out == value


def test_xml_wraps_list_under_root():
    s = serialize({"commands": [{"a": "1"}, {"a": "2"}]}, fmt="xml")
    out = deserialize(s)  # XML is sniffed from leading "<"
    assert out == {"cgraph": {"commands": [{"a": "1"}, {"a": "2"}]}}


def test_results_serialize_as_plain_data():
    results = [
        CommandResult("init", [Element("svg", {"width": "30em"})], name="init"),
        CommandResult("grid", [Element("path", {"d": "M 0 0 V 1"})]),
    ]
    out = json.loads(serialize({"commands": results}, fmt="json"))
    assert out == {"commands": [
        {"command": "init", "name": "init", "elements": [{"tag": "svg", "attributes": {"width": "30em"}}]},
        {"command": "grid", "elements": [{"tag": "path", "attributes": {"d": "M 0 0 V 1"}}]},
    ]}


def test_results_serialize_to_yaml():
    results = [CommandResult("axis", [Element("path", {"d": "M 0 0"})])]
    out = deserialize(serialize(results, fmt="yaml"), fmt="yaml")
    assert out == [{"command": "axis", "elements": [{"tag": "path", "attributes": {"d": "M 0 0"}}]}]


@pytest.mark.parametrize(
    "path,hint,expected",
    [
        ("a.json", None, "json"),
        ("a.YAML", None, "yaml"),
        ("a.yml", None, "yaml"),
        ("a.toml", None, "toml"),
        ("a.xml", None, "xml"),
        (None, '  {"a": 1}', "json"),
        (None, "[1, 2]", "json"),
        (None, "<a/>", "xml"),
        (None, "a: 1", None),
        ("a.txt", None, None),
    ],
)
def test_detect_format(path, hint, expected):
    assert detect_format(path, hint) == expected


def test_deserialize_bytes_yaml():
    data = "a: 1\n".encode("utf-8")
    out = deserialize(data, fmt="yaml")
    assert out == {"a": 1}


@pytest.mark.parametrize(
    "text,fmt",
    [
        ('{"a": ', "json"),
        ("a: [1", "yaml"),
        ("a = ", "toml"),
        ("<a><b></a>", "xml"),
    ],
)
def test_deserialize_malformed_raises(text, fmt):
    with pytest.raises(ValueError):
        deserialize(text, fmt=fmt)


def test_deserialize_unknown_format_raises():
    with pytest.raises(ValueError):
        deserialize("plain text")
    with pytest.raises(ValueError):
        deserialize("a=1", fmt="ini")


def test_serialize_unknown_format_raises():
    with pytest.raises(ValueError):
        serialize({"a": 1}, fmt="csv")

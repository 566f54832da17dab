from collections.abc import Sequence
from copy import deepcopy
from types import MappingProxyType

import pytest

from webidl_helpers import (
    BASE_TYPE_CONVERSION_MAP,
    build_minimal_webidl,
    collect_type_references,
    filter_interfaces_by_exposure,
    follow_type_references,
    get_empty_webidl,
    get_non_value_type_map,
    mark_as_deprecated,
)


def _interface(name: str, *, types: Sequence[str] = (), **extra) -> dict:
    properties = {f"p{i}": {"name": f"p{i}", "type": t} for i, t in enumerate(types)}
    return {"name": name, "properties": {"property": properties}, **extra}


@pytest.fixture
def webidl() -> dict:
    doc = get_empty_webidl()
    doc["interfaces"]["interface"] = {
        "Foo": _interface("Foo", types=["Bar"]),
        "Qux": _interface("Qux", types=["Foo", "DOMString"]),
        "Plain": _interface("Plain", types=["long", "DOMString", "Plain"]),
    }
    doc["dictionaries"]["dictionary"] = {
        "Bar": {"name": "Bar", "members": {"member": {"mode": {"name": "mode", "type": "Baz"}}}},
        "Lonely": {"name": "Lonely", "members": {"member": {}}},
    }
    doc["enums"]["enum"] = {"Baz": {"name": "Baz", "value": ["a", "b"]}}
    doc["mixins"]["mixin"] = {"FooMixin": _interface("FooMixin", types=["Handler"])}
    doc["callback-functions"]["callback-function"] = {
        "Handler": {"name": "Handler", "signature": [{"type": "void", "param": [{"name": "ev", "type": "Bar"}]}]},
    }
    doc["callback-interfaces"]["interface"] = {"Listener": _interface("Listener")}
    doc["typedefs"]["typedef"] = [
        {"new-type": "Unused", "type": "long"},
        {"new-type": "BarOrHandler", "type": [{"type": "Bar"}, {"type": "Handler"}]},
    ]
    return doc


def test_closure_excludes_retained_interfaces(webidl: dict) -> None:
    webidl["dictionaries"]["dictionary"]["Bar"]["members"]["member"] = {}
    interfaces = webidl["interfaces"]["interface"]

    result = follow_type_references(webidl, {"Foo": interfaces["Foo"]})

    assert result == {"Bar"}


def test_closure_is_transitive(webidl: dict) -> None:
    interfaces = webidl["interfaces"]["interface"]
    assert follow_type_references(webidl, {"Foo": interfaces["Foo"]}) == {"Bar", "Baz"}


def test_closure_never_contains_filtered_interfaces(webidl: dict) -> None:
    interfaces = webidl["interfaces"]["interface"]
    result = follow_type_references(webidl, {"Foo": interfaces["Foo"], "Qux": interfaces["Qux"]})
    assert result == {"Bar", "Baz"}
    assert "Foo" not in result


def test_primitives_never_appear(webidl: dict) -> None:
    interfaces = webidl["interfaces"]["interface"]
    result = follow_type_references(webidl, interfaces)
    assert "DOMString" not in result
    assert "long" not in result


def test_disconnected_interfaces_need_nothing(webidl: dict) -> None:
    interfaces = webidl["interfaces"]["interface"]
    assert follow_type_references(webidl, {"Plain": interfaces["Plain"]}) == set()


def test_extends_implements_and_typedefs_are_followed(webidl: dict) -> None:
    iface = _interface(
        "Widget",
        types=["BarOrHandler"],
        extends="Listener",
        implements=["FooMixin"],
    )
    result = follow_type_references(webidl, {"Widget": iface})
    assert result == {"Listener", "FooMixin", "Handler", "BarOrHandler", "Bar", "Baz"}


def test_unknown_references_are_dropped(webidl: dict) -> None:
    iface = _interface("Widget", types=["NotDefinedAnywhere"], extends="EventTarget")
    assert follow_type_references(webidl, {"Widget": iface}) == set()


def test_interfaces_outside_the_filter_are_not_pulled_in(webidl: dict) -> None:
    interfaces = webidl["interfaces"]["interface"]
    assert follow_type_references(webidl, {"Qux": interfaces["Qux"]}) == set()


def test_read_only_mappings_are_walked(webidl: dict) -> None:
    filtered = MappingProxyType({"Foo": MappingProxyType({"name": "Foo", "type": "Bar"})})
    assert follow_type_references(webidl, filtered) == {"Bar", "Baz"}

    frozen_doc = MappingProxyType(
        {tag: MappingProxyType(collections) for tag, collections in webidl.items()}
    )
    assert follow_type_references(frozen_doc, filtered) == {"Bar", "Baz"}
    assert set(get_non_value_type_map(frozen_doc)) == set(get_non_value_type_map(webidl))


def test_base_types_can_be_injected(webidl: dict) -> None:
    interfaces = webidl["interfaces"]["interface"]
    base_types = {**BASE_TYPE_CONVERSION_MAP, "Bar": "Bar"}
    assert follow_type_references(webidl, {"Foo": interfaces["Foo"]}, base_types=base_types) == set()


def test_closure_does_not_mutate_the_document(webidl: dict) -> None:
    before = deepcopy(webidl)
    follow_type_references(webidl, webidl["interfaces"]["interface"])
    assert webidl == before


def test_collect_type_references_reads_type_extends_and_implements() -> None:
    node = {
        "name": "A",
        "extends": "B",
        "implements": ["C", "D"],
        "methods": {"method": {"m": {"signature": [{"type": "E", "param": [{"type": "F"}]}]}}},
        "type": [{"type": "G"}],
    }
    assert sorted(collect_type_references(node)) == ["B", "C", "D", "E", "F", "G"]


def test_non_value_type_map_indexes_every_category(webidl: dict) -> None:
    type_map = get_non_value_type_map(webidl)
    assert set(type_map) == {
        "Bar",
        "Lonely",
        "Baz",
        "FooMixin",
        "Handler",
        "Listener",
        "Unused",
        "BarOrHandler",
    }
    assert type_map["BarOrHandler"]["new-type"] == "BarOrHandler"


def test_identity_collision_across_categories_fails(webidl: dict) -> None:
    webidl["enums"]["enum"]["Bar"] = {"name": "Bar", "value": ["x"]}
    with pytest.raises(RuntimeError, match="'Bar' is defined in both dictionaries and enums"):
        get_non_value_type_map(webidl)


def test_build_minimal_webidl_keeps_only_dependencies(webidl: dict) -> None:
    before = deepcopy(webidl)
    interfaces = webidl["interfaces"]["interface"]
    filtered = {"Foo": interfaces["Foo"]}
    webidl["typedefs"]["typedef"].append({"new-type": "BazAlias", "type": "Baz"})
    interfaces["Foo"]["properties"]["property"]["alias"] = {"name": "alias", "type": "BazAlias"}

    out = build_minimal_webidl(webidl, filtered)

    assert out["interfaces"]["interface"] == filtered
    assert set(out["dictionaries"]["dictionary"]) == {"Bar"}
    assert set(out["enums"]["enum"]) == {"Baz"}
    assert out["mixins"]["mixin"] == {}
    assert out["callback-functions"]["callback-function"] == {}
    assert out["callback-interfaces"]["interface"] == {}
    assert [t["new-type"] for t in out["typedefs"]["typedef"]] == ["BazAlias"]
    assert set(webidl["dictionaries"]["dictionary"]) == set(before["dictionaries"]["dictionary"])


def test_filter_interfaces_by_exposure() -> None:
    doc = get_empty_webidl()
    doc["interfaces"]["interface"] = {
        "Window": {
            "name": "Window",
            "exposed": "Window",
            "methods": {
                "method": {
                    "alert": {"name": "alert", "exposed": "Window"},
                    "postMessage": {"name": "postMessage", "exposed": "Window Worker"},
                    "importScripts": {"name": "importScripts", "exposed": "Worker"},
                }
            },
        },
        "WorkerGlobalScope": {"name": "WorkerGlobalScope", "exposed": "Worker"},
        "Blob": {"name": "Blob"},
    }

    out = filter_interfaces_by_exposure(doc, "Window")

    assert set(out) == {"Window", "Blob"}
    assert set(out["Window"]["methods"]["method"]) == {"alert", "postMessage"}
    assert "importScripts" in doc["interfaces"]["interface"]["Window"]["methods"]["method"]


def test_mark_as_deprecated() -> None:
    iface = {
        "name": "Document",
        "methods": {"method": {"write": {"name": "write"}}},
        "properties": {"property": {"all": {"name": "all"}}},
    }
    mark_as_deprecated(iface)
    assert iface["methods"]["method"]["write"]["deprecated"] == 1
    assert iface["properties"]["property"]["all"]["deprecated"] == 1

    bare = {"name": "Empty"}
    mark_as_deprecated(bare)
    assert bare == {"name": "Empty"}

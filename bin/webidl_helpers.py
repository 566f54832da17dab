"""
Reconcile WebIDL documents and compute the types a subset of interfaces needs.

A document is the JSON object produced by the IDL parser: seven collections
(callback-functions, callback-interfaces, dictionaries, enums, interfaces,
mixins, typedefs), each wrapping a map of entities keyed by name (typedefs are
a list keyed by "new-type").

The three entry points are:

  merge(base, overlay)                    fold an overlay document into base
  resolve_exposure(node, "Window")        stamp the exposure context
  follow_type_references(doc, ifaces)     names of the types ifaces depend on

Everything else is small tree plumbing used by those and by the emitters.
Nothing in here does I/O or logging; errors propagate to the caller.
"""

import json
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional, TypeVar, Union


Json = Union[dict[str, Any], list[Any], str, int, float, bool, None]

T = TypeVar("T")
U = TypeVar("U")


# Types used by the IDL but not defined in any of the documents.
BUFFER_SOURCE_TYPES: frozenset[str] = frozenset(
    {
        "ArrayBuffer",
        "ArrayBufferView",
        "DataView",
        "Int8Array",
        "Uint8Array",
        "Int16Array",
        "Uint16Array",
        "Uint8ClampedArray",
        "Int32Array",
        "Uint32Array",
        "Float32Array",
        "Float64Array",
    }
)
INTEGER_TYPES: frozenset[str] = frozenset(
    {
        "byte",
        "octet",
        "short",
        "unsigned short",
        "long",
        "unsigned long",
        "long long",
        "unsigned long long",
    }
)
STRING_TYPES: frozenset[str] = frozenset({"ByteString", "DOMString", "USVString"})
FLOAT_TYPES: frozenset[str] = frozenset({"float", "unrestricted float", "double", "unrestricted double"})
SAME_TYPES: frozenset[str] = frozenset({"any", "boolean", "Date", "Function", "Promise", "void"})


def _build_base_type_conversion_map() -> dict[str, str]:
    out: dict[str, str] = {}
    for t in sorted(BUFFER_SOURCE_TYPES):
        out[t] = t
    for t in sorted(INTEGER_TYPES | FLOAT_TYPES):
        out[t] = "number"
    for t in sorted(STRING_TYPES):
        out[t] = "string"
    for t in sorted(SAME_TYPES):
        out[t] = t
    out.update(
        {
            "object": "any",
            "sequence": "Array",
            "record": "Record",
            "FrozenArray": "ReadonlyArray",
            "WindowProxy": "Window",
            "EventHandler": "EventHandler",
        }
    )
    return out


# Read-only: source primitive name -> output type name.
BASE_TYPE_CONVERSION_MAP: Mapping[str, str] = MappingProxyType(_build_base_type_conversion_map())


@dataclass(frozen=True)
class WebIdlCollection:
    tag: str
    inner_tag: str
    identity_field: str
    is_list: bool = False


WEBIDL_COLLECTIONS: tuple[WebIdlCollection, ...] = (
    WebIdlCollection("callback-functions", "callback-function", "name"),
    WebIdlCollection("callback-interfaces", "interface", "name"),
    WebIdlCollection("dictionaries", "dictionary", "name"),
    WebIdlCollection("enums", "enum", "name"),
    WebIdlCollection("interfaces", "interface", "name"),
    WebIdlCollection("mixins", "mixin", "name"),
    WebIdlCollection("typedefs", "typedef", "new-type", is_list=True),
)

_COLLECTIONS_BY_TAG: dict[str, WebIdlCollection] = {c.tag: c for c in WEBIDL_COLLECTIONS}

# Everything that can be referenced as a type but is not an interface.
NON_VALUE_COLLECTIONS: tuple[str, ...] = (
    "callback-functions",
    "callback-interfaces",
    "dictionaries",
    "enums",
    "mixins",
    "typedefs",
)


def get_empty_webidl() -> dict[str, Any]:
    out: dict[str, Any] = {}
    for c in WEBIDL_COLLECTIONS:
        out[c.tag] = {c.inner_tag: [] if c.is_list else {}}
    return out


def entity_identity(entity: Json, category: Optional[str] = None) -> Optional[str]:
    """
    Return the identity of an entity: "name" for every category except
    typedefs, which use "new-type".

    Without a category, "name" is tried first and "new-type" second; this is
    what the merge uses since it does not know which collection an array
    element belongs to.
    """
    if not isinstance(entity, Mapping):
        return None
    if category is None:
        value = entity.get("name") or entity.get("new-type")
    else:
        collection = _COLLECTIONS_BY_TAG.get(category)
        if collection is None:
            raise ValueError(f"Unknown WebIDL collection {category!r}.")
        value = entity.get(collection.identity_field)
    if isinstance(value, str) and value:
        return value
    return None


def filter_tree(obj: Json, fn: Callable[[Any, Optional[str]], bool]) -> Json:
    """
    Recursively copy obj keeping only the values fn accepts.

    fn receives (value, key) for dict entries and (item, None) for list items.
    Scalars are returned unchanged.
    """
    if isinstance(obj, list):
        return [filter_tree(item, fn) for item in obj if fn(item, None)]
    if isinstance(obj, dict):
        return {k: filter_tree(v, fn) for k, v in obj.items() if fn(v, k)}
    return obj


def filter_properties(obj: Mapping[str, T], fn: Callable[[T], bool]) -> dict[str, T]:
    return {k: v for k, v in obj.items() if fn(v)}


def exposes_to(entity: Any, target: str) -> bool:
    if not isinstance(entity, dict) or not isinstance(entity.get("exposed"), str):
        return True
    return target in entity["exposed"].split()


def distinct(items: Iterable[T]) -> list[T]:
    return list(dict.fromkeys(items))


def map_to_array(mapping: Optional[Mapping[str, T]]) -> list[T]:
    return list((mapping or {}).values())


def array_to_map(
    items: Iterable[T],
    make_key: Callable[[T], str],
    make_value: Callable[[T], U],
) -> dict[str, U]:
    out: dict[str, U] = {}
    for item in items:
        out[make_key(item)] = make_value(item)
    return out


def map_values(mapping: Optional[Mapping[str, T]], fn: Callable[[T], U]) -> list[U]:
    return [fn(v) for v in (mapping or {}).values()]


def map_defined(items: Optional[Iterable[T]], fn: Callable[[T, int], Optional[U]]) -> list[U]:
    out: list[U] = []
    for i, item in enumerate(items or ()):
        mapped = fn(item, i)
        if mapped is not None:
            out.append(mapped)
    return out


def to_name_map(items: Iterable[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    return {item["name"]: item for item in items}


def is_array(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def flat_map(items: Optional[Iterable[T]], fn: Callable[[T, int], Any]) -> list[Any]:
    out: list[Any] = []
    for i, item in enumerate(items or ()):
        v = fn(item, i)
        if not v:
            continue
        if is_array(v):
            out.extend(v)
        else:
            out.append(v)
    return out


def concat(a: Optional[list[T]], b: Optional[list[T]]) -> list[T]:
    return [*(a or []), *(b or [])]


def _mismatch_error(key: Any, value: Any) -> RuntimeError:
    return RuntimeError(f"Mismatch on property {key!r}: {json.dumps(value, default=str)}")


def _has_string_name(value: Any) -> bool:
    return isinstance(value, dict) and isinstance(value.get("name"), str)


def _identity_index(items: list[Any]) -> dict[str, Any]:
    index: dict[str, Any] = {}
    for item in items:
        key = entity_identity(item)
        if key:
            index[key] = item
    return index


def _check_merge_shapes(base: Json, overlay: Json, shallow: bool) -> None:
    # Same pairings as _merge_into(), read-only.
    if isinstance(base, list) and isinstance(overlay, list):
        _check_named_array_shapes(base, overlay)
        return
    if not isinstance(base, dict) or not isinstance(overlay, dict):
        return
    for k, overlay_prop in overlay.items():
        if k not in base:
            continue
        base_prop = base[k]
        if isinstance(base_prop, list) and isinstance(overlay_prop, list):
            _check_named_array_shapes(base_prop, overlay_prop)
        elif isinstance(base_prop, list) != isinstance(overlay_prop, list):
            raise _mismatch_error(k, overlay_prop)
        elif not (shallow and _has_string_name(base_prop) and _has_string_name(overlay_prop)):
            _check_merge_shapes(base_prop, overlay_prop, shallow)


def _check_named_array_shapes(base_items: list[Any], overlay_items: list[Any]) -> None:
    index = _identity_index(base_items)
    # Repeated keys merge into the same base element one after another.
    earlier: dict[str, list[Any]] = {}
    for item in overlay_items:
        key = entity_identity(item)
        if not key or key not in index:
            continue
        _check_merge_shapes(index[key], item, False)
        for previous in earlier.get(key, []):
            _check_merge_shapes(previous, item, False)
        earlier.setdefault(key, []).append(item)


def _merge_named_arrays(base_items: list[Any], overlay_items: list[Any]) -> None:
    index = _identity_index(base_items)
    for item in overlay_items:
        key = entity_identity(item)
        if key and key in index:
            _merge_into(index[key], item, False)
        else:
            base_items.append(item)


def _merge_into(base: Json, overlay: Json, shallow: bool) -> Json:
    if isinstance(base, list) and isinstance(overlay, list):
        _merge_named_arrays(base, overlay)
        return base
    if not isinstance(base, dict) or not isinstance(overlay, dict):
        return overlay
    for k, overlay_prop in overlay.items():
        if k not in base:
            base[k] = overlay_prop
            continue
        base_prop = base[k]
        if isinstance(base_prop, list) and isinstance(overlay_prop, list):
            _merge_named_arrays(base_prop, overlay_prop)
        elif isinstance(base_prop, list) != isinstance(overlay_prop, list):
            raise _mismatch_error(k, overlay_prop)
        elif shallow and _has_string_name(base_prop) and _has_string_name(overlay_prop):
            base[k] = overlay_prop
        else:
            base[k] = _merge_into(base_prop, overlay_prop, shallow)
    return base


def merge(base: Json, overlay: Json, shallow: bool = False) -> Json:
    """
    Deep-merge overlay into base in place and return base.

    Scalars from overlay win. Lists are reconciled by entity identity: a
    matching element is merged field by field (always deeply), anything else
    is appended in overlay order. With shallow=True, two objects that both
    carry a string "name" are swapped wholesale instead of blended.

    Values taken from overlay are adopted by reference, not copied. A list on
    one side and a non-list on the other raises RuntimeError, and base is left
    as it was.
    """
    _check_merge_shapes(base, overlay, shallow)
    return _merge_into(base, overlay, shallow)


def resolve_exposure(node: Json, exposure: str, override: bool = False) -> None:
    if not exposure:
        raise ValueError("No exposure set.")
    _resolve_exposure(node, exposure, override)


def _resolve_exposure(node: Json, exposure: str, override: bool) -> None:
    if isinstance(node, dict):
        if "exposed" in node and (override or node["exposed"] is None):
            node["exposed"] = exposure
        for v in node.values():
            _resolve_exposure(v, exposure, override)
    elif isinstance(node, list):
        for v in node:
            _resolve_exposure(v, exposure, override)


def collect_type_references(node: Json) -> list[str]:
    refs: list[str] = []
    _collect_type_references(node, refs=refs)
    return refs


def _collect_type_references(node: Json, *, refs: list[str]) -> None:
    if isinstance(node, list):
        for v in node:
            _collect_type_references(v, refs=refs)
        return
    if not isinstance(node, Mapping):
        return

    type_value = node.get("type")
    if isinstance(type_value, str):
        refs.append(type_value)
    implements = node.get("implements")
    if isinstance(implements, list):
        refs.extend(v for v in implements if isinstance(v, str))
    extends = node.get("extends")
    if isinstance(extends, str):
        refs.append(extends)

    for v in node.values():
        _collect_type_references(v, refs=refs)


def _iter_collection(webidl: Mapping[str, Any], collection: WebIdlCollection) -> list[Any]:
    wrapper = webidl.get(collection.tag)
    if not isinstance(wrapper, Mapping):
        return []
    entities = wrapper.get(collection.inner_tag)
    if collection.is_list:
        return list(entities or [])
    return map_to_array(entities)


def get_non_value_type_map(webidl: Mapping[str, Any]) -> dict[str, Any]:
    """
    Index every callback, callback interface, dictionary, enum, mixin and
    typedef by its identity.

    The same identity appearing in two different collections is ambiguous and
    raises RuntimeError.
    """
    out: dict[str, Any] = {}
    owner: dict[str, str] = {}
    for tag in NON_VALUE_COLLECTIONS:
        collection = _COLLECTIONS_BY_TAG[tag]
        for entity in _iter_collection(webidl, collection):
            name = entity_identity(entity, tag)
            if name is None:
                continue
            previous = owner.get(name)
            if previous is not None and previous != tag:
                raise RuntimeError(f"Type {name!r} is defined in both {previous} and {tag}.")
            owner[name] = tag
            out[name] = entity
    return out


def follow_type_references(
    webidl: Mapping[str, Any],
    filtered_interfaces: Mapping[str, Any],
    base_types: Mapping[str, str] = BASE_TYPE_CONVERSION_MAP,
) -> set[str]:
    """
    Return the names of every non-interface type reachable from
    filtered_interfaces through "type", "extends" and "implements".

    Primitives (base_types) and the filtered interfaces themselves are never
    included. References to names the document does not define are dropped.
    """
    type_map = get_non_value_type_map(webidl)
    reachable: set[str] = set()
    stack = distinct(collect_type_references(filtered_interfaces))
    while stack:
        reference = stack.pop()
        if reference in base_types or reference in filtered_interfaces:
            continue
        if reference in reachable:
            continue
        entity = type_map.get(reference)
        if entity is None:
            continue
        reachable.add(reference)
        for inner in collect_type_references(entity):
            if inner not in reachable:
                stack.append(inner)
    return reachable


def filter_interfaces_by_exposure(webidl: Mapping[str, Any], target: str) -> dict[str, Any]:
    interfaces = (webidl.get("interfaces") or {}).get("interface") or {}
    exposed = filter_properties(interfaces, lambda i: exposes_to(i, target))
    return filter_tree(exposed, lambda o, _key: exposes_to(o, target))


def build_minimal_webidl(webidl: Mapping[str, Any], filtered_interfaces: Mapping[str, Any]) -> dict[str, Any]:
    """
    Build a new document holding filtered_interfaces and only the types they
    depend on. webidl itself is not modified; entities are shared, not copied.
    """
    keep = follow_type_references(webidl, filtered_interfaces)
    out = get_empty_webidl()
    out["interfaces"]["interface"] = dict(filtered_interfaces)
    for tag in NON_VALUE_COLLECTIONS:
        collection = _COLLECTIONS_BY_TAG[tag]
        kept = [e for e in _iter_collection(webidl, collection) if entity_identity(e, tag) in keep]
        if collection.is_list:
            out[tag][collection.inner_tag] = kept
        else:
            out[tag][collection.inner_tag] = array_to_map(kept, lambda e: e["name"], lambda e: e)
    return out


def mark_as_deprecated(interface: dict[str, Any]) -> None:
    for method in map_to_array((interface.get("methods") or {}).get("method")):
        method["deprecated"] = 1
    for prop in map_to_array((interface.get("properties") or {}).get("property")):
        prop["deprecated"] = 1

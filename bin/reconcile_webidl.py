#!/usr/bin/env python3
"""
Merge parsed WebIDL documents into one and prune it down to what a target needs.

Each source is a JSON (or YAML) document in the parser's output shape. Sources
are folded in order into an empty document; `--override` documents are merged
last and replace same-named entities wholesale instead of blending them.

After merging, exposure contexts are stamped, interfaces are selected (by
`--target` exposure and/or a manifest allow/deny list), and the output keeps
only the callbacks, dictionaries, enums, mixins and typedefs those interfaces
reference, directly or through each other.

Usage:
    python bin/reconcile_webidl.py browser.widl.json overrides.json \\
        --exposure Window --target Window -o out.json
    python bin/reconcile_webidl.py *.json --manifest manifest.yaml --full
"""

import argparse
import json
import sys
from copy import deepcopy
from pathlib import Path
from typing import Any

import yaml

from webidl_helpers import (
    Json,
    build_minimal_webidl,
    filter_interfaces_by_exposure,
    get_empty_webidl,
    mark_as_deprecated,
    merge,
    resolve_exposure,
)


def _eprint(*args: object) -> None:
    print(*args, file=sys.stderr)


def _load_document(path: Path) -> Json:
    suffix = path.suffix.lower()
    with path.open("r", encoding="utf-8") as f:
        if suffix in (".yaml", ".yml"):
            return yaml.safe_load(f)
        # JSON for ".json" and as a last resort.
        return json.load(f)


def _load_webidl(path: Path) -> dict[str, Any]:
    raw = _load_document(path)
    if not isinstance(raw, dict):
        raise RuntimeError(f"WebIDL document {path} must be an object at top-level (got {type(raw).__name__}).")
    return raw


def _load_manifest(path: Path) -> dict[str, Any]:
    raw = _load_document(path)
    if not isinstance(raw, dict):
        raise RuntimeError(f"Manifest must be a JSON/YAML object at top-level (got {type(raw).__name__}).")
    return raw


def _get_manifest_roots(manifest: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    allow = manifest.get("allow")
    deny = manifest.get("deny")

    if allow is None and deny is None:
        # A manifest without allow/deny sections is a plain deny list.
        deny = manifest
        allow = {}

    if allow is None:
        allow = {}
    if deny is None:
        deny = {}

    if not isinstance(allow, dict) or not isinstance(deny, dict):
        raise RuntimeError("Manifest allow/deny must be objects if provided.")

    return allow, deny


def _normalize_string_list(values: Any, *, label: str) -> list[str]:
    if values is None:
        return []
    if not isinstance(values, list):
        raise RuntimeError(f"Manifest {label} must be a list of strings.")
    out: list[str] = []
    for v in values:
        if v is None:
            continue
        if not isinstance(v, str):
            raise RuntimeError(f"Manifest {label} must be a list of strings.")
        v = v.strip()
        if not v:
            continue
        out.append(v)
    return out


def _get_manifest_interfaces(manifest: dict[str, Any]) -> tuple[set[str], set[str]]:
    allow_root, deny_root = _get_manifest_roots(manifest)
    allow = _normalize_string_list(allow_root.get("interfaces"), label="allow.interfaces")
    deny = _normalize_string_list(deny_root.get("interfaces"), label="deny.interfaces")
    return set(allow), set(deny)


def _apply_manifest(interfaces: dict[str, Any], *, manifest_path: Path) -> dict[str, Any]:
    """
    Select interfaces with a manifest.

    Supported keys:
      - allow.interfaces: keep only these (empty or missing keeps everything)
      - deny.interfaces: drop these
      - deprecated: mark every method and property of these interfaces deprecated
    """
    manifest = _load_manifest(manifest_path)
    allow, deny = _get_manifest_interfaces(manifest)
    deprecated = _normalize_string_list(manifest.get("deprecated"), label="deprecated")

    for name in sorted((allow | deny | set(deprecated)) - set(interfaces)):
        _eprint(f"warning: manifest names unknown interface {name!r}.")

    out: dict[str, Any] = {}
    for name, interface in interfaces.items():
        if allow and name not in allow:
            continue
        if name in deny:
            continue
        out[name] = interface

    for name in deprecated:
        interface = out.get(name)
        if isinstance(interface, dict):
            mark_as_deprecated(interface)
    return out


def _reconcile(
    sources: list[Path],
    *,
    overrides: list[Path],
    exposure: str | None,
    force_exposure: str | None,
) -> dict[str, Any]:
    webidl = get_empty_webidl()
    for path in sources:
        try:
            merge(webidl, deepcopy(_load_webidl(path)))
        except RuntimeError as e:
            raise RuntimeError(f"Failed to merge {path}: {e}") from e
    for path in overrides:
        try:
            merge(webidl, deepcopy(_load_webidl(path)), shallow=True)
        except RuntimeError as e:
            raise RuntimeError(f"Failed to merge override {path}: {e}") from e

    if force_exposure:
        resolve_exposure(webidl, force_exposure, override=True)
    elif exposure:
        resolve_exposure(webidl, exposure)
    return webidl


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Merge parsed WebIDL documents and keep only the types the selected interfaces need."
    )
    p.add_argument(
        "sources",
        nargs="+",
        help="Parsed WebIDL JSON/YAML documents, merged in the order given.",
    )
    p.add_argument(
        "--override",
        action="append",
        default=[],
        help="Document merged after the sources; same-named entities replace the merged ones. Can be repeated.",
    )
    exposure = p.add_mutually_exclusive_group()
    exposure.add_argument(
        "--exposure",
        default=None,
        help="Exposure context stamped on every entity that does not have one yet (e.g. 'Window').",
    )
    exposure.add_argument(
        "--force-exposure",
        default=None,
        help="Exposure context stamped on every entity, replacing existing values.",
    )
    p.add_argument(
        "--target",
        default=None,
        help="Keep only interfaces and members exposed to this context.",
    )
    p.add_argument(
        "--manifest",
        default=None,
        help="Optional JSON/YAML manifest with allow/deny interface lists and deprecated interfaces.",
    )
    p.add_argument(
        "--full",
        action="store_true",
        help="Emit the whole reconciled document instead of pruning unreferenced types.",
    )
    p.add_argument(
        "-o",
        "--output",
        help="Write output to this file (default: stdout).",
        default=None,
    )
    p.add_argument(
        "--no-pretty",
        action="store_true",
        help="Emit compact JSON instead of pretty-printed output.",
    )
    return p.parse_args(argv)


def main(argv: list[str]) -> int:
    args = _parse_args(argv)

    sources = [Path(s) for s in args.sources]
    overrides = [Path(s) for s in args.override]
    for path in sources + overrides:
        if not path.exists():
            _eprint(f"error: source does not exist: {path}")
            return 2

    try:
        webidl = _reconcile(
            sources,
            overrides=overrides,
            exposure=args.exposure,
            force_exposure=args.force_exposure,
        )
        if args.target:
            interfaces = filter_interfaces_by_exposure(webidl, args.target)
        else:
            interfaces = dict(webidl["interfaces"]["interface"])
        if args.manifest:
            interfaces = _apply_manifest(interfaces, manifest_path=Path(args.manifest))

        if args.full:
            webidl["interfaces"]["interface"] = interfaces
            out_doc = webidl
        else:
            out_doc = build_minimal_webidl(webidl, interfaces)
    except Exception as e:
        _eprint(f"error: {e}")
        return 1

    indent = None if args.no_pretty else 2
    content = json.dumps(out_doc, indent=indent, ensure_ascii=True, sort_keys=False) + ("\n" if indent else "")

    if args.output:
        Path(args.output).write_text(content, encoding="utf-8")
    else:
        sys.stdout.write(content)
    return 0


def _console_main() -> None:
    raise SystemExit(main(sys.argv[1:]))


if __name__ == "__main__":
    _console_main()

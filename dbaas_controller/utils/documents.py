"""
Helpers for layering JSON-like CR documents.

Documents are plain dicts. Layers are merged key by key, so an overlay only
touches the fields it names and every other field of the base survives.
"""
import copy
import json
from typing import Any, Dict, List


class Replace:
    """
    Overlay marker: write the wrapped value instead of merging into the base.

    Used where a partial merge would leave stale entries behind, e.g. resource
    limits or the list of backup schedules.
    """

    __slots__ = ("value",)

    def __init__(self, value: Any):
        self.value = value

    def __repr__(self) -> str:
        return f"Replace({self.value!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Replace) and other.value == self.value


def _unwrap(value: Any) -> Any:
    if isinstance(value, Replace):
        return _unwrap(value.value)
    if isinstance(value, dict):
        return {k: _unwrap(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_unwrap(v) for v in value]
    return copy.deepcopy(value)


def _is_named_list(value: Any) -> bool:
    return isinstance(value, list) and bool(value) and all(
        isinstance(item, dict) and "name" in item for item in value
    )


def _merge_named(base: List[Dict[str, Any]], overlay: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    merged = [copy.deepcopy(item) for item in base]
    index = {item["name"]: i for i, item in enumerate(merged)}
    for item in overlay:
        position = index.get(item["name"])
        if position is None:
            merged.append(_unwrap(item))
            index[item["name"]] = len(merged) - 1
        else:
            merged[position] = deep_merge(merged[position], item)
    return merged


def deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge ``overlay`` into a copy of ``base``.

    Rules:
    - None in the overlay means "not set" and leaves the base untouched
    - Replace(value) overwrites the base value as a whole
    - dicts merge recursively
    - lists of named dicts (replsets, containers) merge item by item on "name"
    - any other value overwrites

    Neither argument is modified.
    """
    result = copy.deepcopy(base)
    for key, value in overlay.items():
        if value is None:
            continue
        if isinstance(value, Replace):
            result[key] = _unwrap(value.value)
            continue

        current = result.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            result[key] = deep_merge(current, value)
        elif _is_named_list(value) and _is_named_list(current):
            result[key] = _merge_named(current, value)
        else:
            result[key] = _unwrap(value)
    return result


def prune(document: Any) -> Any:
    """Drop None values recursively so absent fields never serialize as null."""
    if isinstance(document, dict):
        return {k: prune(v) for k, v in document.items() if v is not None}
    if isinstance(document, list):
        return [prune(v) for v in document if v is not None]
    return document


def get_path(document: Dict[str, Any], *path: str, default: Any = None) -> Any:
    """Read a nested value, returning ``default`` when any step is missing."""
    current: Any = document
    for key in path:
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


def render(document: Dict[str, Any]) -> str:
    """Serialize a document with sorted keys; equal documents render byte-identical."""
    return json.dumps(document, sort_keys=True, separators=(",", ":"))

from __future__ import annotations

import collections.abc
import dataclasses
import json
from typing import Any, Optional

import toml
import xmltodict
import yaml

# TOML reading: prefer stdlib tomllib (3.11+); dumping always goes through 'toml'
try:
    import tomllib as _toml_loader  # type: ignore[attr-defined]
except ImportError:
    _toml_loader = toml  # type: ignore[assignment]


# --------------------------
# Helpers
# --------------------------

def _norm_text(data: bytes | bytearray | str, *, encoding: Optional[str] = None) -> str:
    if isinstance(data, (bytes, bytearray)):
        return data.decode(encoding or 'utf-8', errors='replace')
    if isinstance(data, str):
        return data
    return str(data)


def _to_builtin(obj: Any) -> Any:
    # Convert results, tuples and xmltodict mappings to plain containers recursively
    if hasattr(obj, 'to_dict'):
        return _to_builtin(obj.to_dict())
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return _to_builtin(dataclasses.asdict(obj))
    if isinstance(obj, (list, tuple)):
        return [_to_builtin(x) for x in obj]
    if isinstance(obj, collections.abc.Mapping):
        return {k: _to_builtin(v) for k, v in obj.items()}
    return obj


def detect_format(path: Optional[str] = None, data_hint: Optional[str] = None) -> Optional[str]:
    """
    Returns a canonical format name among: 'json', 'yaml', 'toml', 'xml'.
    Uses the file extension first; falls back to simple data sniffing if provided.
    """
    p = (path or "").lower()
    if p.endswith('.json'):
        return 'json'
    if p.endswith('.yaml') or p.endswith('.yml'):
        return 'yaml'
    if p.endswith('.toml'):
        return 'toml'
    if p.endswith('.xml'):
        return 'xml'

    if data_hint is not None:
        s = data_hint.lstrip()
        if s.startswith('{') or s.startswith('['):
            return 'json'
        if s.startswith('<'):
            return 'xml'
    return None


# --------------------------
# Public API
# --------------------------

def deserialize(data: bytes | bytearray | str,
                *,
                fmt: Optional[str] = None,
                path: Optional[str] = None) -> Any:
    """
    Convert text (or bytes) to native Python structures.
    Supported fmt: 'json', 'yaml', 'toml', 'xml'.
    If fmt is None, uses the path extension, then sniffing.
    Malformed input raises ValueError.
    """
    text = _norm_text(data)
    f = (fmt or detect_format(path, text) or '').lower()
    try:
        if f == 'json':
            return json.loads(text)
        if f == 'yaml':
            return yaml.safe_load(text)
        if f == 'toml':
            return _toml_loader.loads(text)
        if f == 'xml':
            return _to_builtin(xmltodict.parse(text))
    except ValueError:
        raise
    except Exception as e:
        raise ValueError(f"Malformed {f} data: {e}") from e
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


def serialize(value: Any,
              *,
              fmt: str,
              pretty: bool = True,
              xml_root: str = "cgraph") -> str:
    """
    Convert a native value (results included) into a textual representation.
    - fmt: 'json' | 'yaml' | 'toml' | 'xml'
    - For XML (and TOML), a value without a single mapping root is wrapped under {xml_root: value}
    """
    f = (fmt or '').lower()
    built = _to_builtin(value)
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False)
    if f == 'toml':
        if not isinstance(built, dict):
            built = {xml_root: built}
        return toml.dumps(built)
    if f == 'xml':
        # xmltodict needs exactly one root element
        if isinstance(built, dict) and len(built) == 1 and isinstance(next(iter(built.values())), dict):
            root = built
        else:
            root = {xml_root: built}
        return xmltodict.unparse(root, pretty=pretty)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


__all__ = [
    "deserialize",
    "serialize",
    "detect_format",
]

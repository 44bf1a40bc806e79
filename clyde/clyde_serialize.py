from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import yaml


# --------------------------
# Helpers
# --------------------------

def _norm_text(data: bytes | bytearray | str, *, encoding: Optional[str] = None) -> str:
    if isinstance(data, (bytes, bytearray)):
        return data.decode(encoding or 'utf-8', errors='replace')
    return data


def detect_format(path: Optional[str] = None, data_hint: Optional[str] = None) -> Optional[str]:
    """
    Returns a canonical format name, 'json' or 'yaml'.
    Uses the file extension first; falls back to simple data sniffing if provided.
    """
    suffix = Path(path).suffix.lower() if path else ""
    if suffix == '.json':
        return 'json'
    if suffix in ('.yaml', '.yml'):
        return 'yaml'

    # Heuristics based on data
    if data_hint is not None:
        s = data_hint.lstrip()
        if s.startswith('{') or s.startswith('['):
            return 'json'
        return 'yaml'
    return None


# --------------------------
# Public API
# --------------------------

def deserialize(data: bytes | bytearray | str,
                *,
                path: Optional[str] = None,
                fmt: Optional[str] = None) -> Any:
    """
    Convert snapshot data (bytes/string) to native Python structures.
    Supported fmt: 'json', 'yaml'. If fmt is None, uses the path, then sniffing.
    Malformed input raises ValueError.
    """
    text = _norm_text(data)
    f = fmt or detect_format(path, text)
    if f == 'json':
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid JSON: {e}") from e
    if f == 'yaml':
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValueError(f"invalid YAML: {e}") from e
    raise ValueError(f"Unsupported snapshot format: {f!r}")


__all__ = [
    "deserialize",
    "detect_format",
]

# flowmend/utils/io.py
from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Union

import yaml

from flowmend.errors import DocumentParseError

PathLike = Union[str, Path]


def to_path(p: PathLike) -> Path:
    return p if isinstance(p, Path) else Path(p)


def ensure_parent(path: PathLike) -> Path:
    """Ensure parent directory exists for a file path."""
    p = to_path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    return p


# -------- Documents on disk --------
def read_json(path: PathLike) -> Any:
    """
    Load a JSON file (UTF-8, BOM tolerated). Malformed content raises
    DocumentParseError naming the file and position.
    """
    text = to_path(path).read_text(encoding="utf-8-sig")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise DocumentParseError(f"{path}: invalid JSON at line {e.lineno} column {e.colno}: {e.msg}",
                                 text=text) from e


def write_json(path: PathLike, data: Any, indent: int = 2) -> Path:
    """Write JSON atomically, pretty-formatted, newline-terminated."""
    p = ensure_parent(path)
    tmp = p.with_suffix(p.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=indent)
        f.write("\n")
    tmp.replace(p)
    return p


def load_any(path: PathLike) -> Any:
    """
    Settings / fixture loader by extension:
      - .json -> JSON
      - .yaml/.yml -> YAML
    """
    p = to_path(path)
    suf = p.suffix.lower()
    if suf == ".json":
        return read_json(p)
    if suf in (".yaml", ".yml"):
        with p.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    raise ValueError(f"Unsupported extension: {suf} for {p}")


# -------- Canonical serialization --------
def canonical_json(data: Any) -> str:
    """
    Stable serialization: keys sorted at every depth, no insignificant whitespace.
    Two documents that differ only in key insertion order serialize identically.
    """
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def content_hash(data: Any) -> str:
    """sha256 hex digest of canonical_json(data)."""
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()

# tests/test_io.py

import pytest

from flowmend.errors import DocumentParseError
from flowmend.utils.io import canonical_json, content_hash, load_any, read_json, write_json


def test_write_json_round_trips_and_leaves_no_temp_file(tmp_path):
    out = write_json(tmp_path / "nested" / "wf.json", {"name": "Ünïcode", "nodes": []})
    assert read_json(out) == {"name": "Ünïcode", "nodes": []}
    assert out.read_text(encoding="utf-8").endswith("\n")
    assert not (tmp_path / "nested" / "wf.json.tmp").exists()


def test_read_json_tolerates_bom(tmp_path):
    path = tmp_path / "bom.json"
    path.write_bytes(b'\xef\xbb\xbf{"nodes": []}')
    assert read_json(path) == {"nodes": []}


def test_read_json_reports_position(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text('{\n  "nodes": [,\n}', encoding="utf-8")
    with pytest.raises(DocumentParseError) as exc:
        read_json(path)
    assert "broken.json" in str(exc.value)
    assert "line 2" in str(exc.value)
    assert exc.value.text.startswith("{")


def test_load_any_by_extension(tmp_path):
    (tmp_path / "a.yml").write_text("max_attempts: 4\n", encoding="utf-8")
    assert load_any(tmp_path / "a.yml") == {"max_attempts": 4}
    with pytest.raises(ValueError):
        load_any(tmp_path / "a.toml")


def test_canonical_json_is_order_independent():
    a = {"b": 1, "a": {"y": [1, 2], "x": None}}
    b = {"a": {"x": None, "y": [1, 2]}, "b": 1}
    assert canonical_json(a) == canonical_json(b) == '{"a":{"x":null,"y":[1,2]},"b":1}'
    assert content_hash(a) == content_hash(b)
    assert len(content_hash(a)) == 64

# tests/test_fixer_bench.py

import json
from pathlib import Path

import pytest

from flowmend.fixer.pipeline import fix
from flowmend.model.taxonomy import NodeFamily, family_of
from flowmend.structural.validator import validate
from flowmend.utils.graph import iter_edges

BENCH = Path(__file__).resolve().parent.parent / "bench" / "repair"


def _all_keys(value):
    if isinstance(value, dict):
        for k, v in value.items():
            yield k
            yield from _all_keys(v)
    elif isinstance(value, list):
        for v in value:
            yield from _all_keys(v)


@pytest.mark.parametrize("case_dir", sorted(BENCH.glob("R*")), ids=lambda p: p.name)
def test_repair_bench(case_dir: Path):
    """
    Repair benchmark:
    - load workflow.json / expect.json
    - validate, fix, validate again
    - check the coarse properties listed under expect["assert"]
    """
    with (case_dir / "workflow.json").open("r", encoding="utf-8") as f:
        workflow = json.load(f)
    with (case_dir / "expect.json").open("r", encoding="utf-8") as f:
        expect = json.load(f)

    asserts = expect.get("assert") or {}
    before = validate(workflow)
    result = fix(workflow)
    wf = result.workflow
    after = validate(wf)
    names = [n["name"] for n in wf["nodes"]]
    edges = {(src, hop["node"]) for src, _t, _i, hop in iter_edges(wf["connections"])}

    # ---- errors_before ----
    for kind in asserts.get("errors_before", []):
        assert kind in [e.kind for e in before.errors], f"{case_dir.name}: expected {kind} before fixing"

    # ---- no_noop ----
    if asserts.get("no_noop"):
        assert not any(family_of(n["type"]) == NodeFamily.NOOP for n in wf["nodes"]), case_dir.name

    # ---- node_count ----
    if "node_count" in asserts:
        assert len(wf["nodes"]) == asserts["node_count"], case_dir.name

    # ---- absent_keys ----
    if "absent_keys" in asserts:
        present = set(_all_keys(wf)) & set(asserts["absent_keys"])
        assert not present, f"{case_dir.name}: keys survived fixing: {sorted(present)}"

    # ---- node_types ----
    for name, type_tag in (asserts.get("node_types") or {}).items():
        got = next(n["type"] for n in wf["nodes"] if n["name"] == name)
        assert got == type_tag, f"{case_dir.name}: {name} has type {got}, expected {type_tag}"

    # ---- connected ----
    for src, tgt in asserts.get("connected", []):
        assert (src, tgt) in edges, f"{case_dir.name}: expected connection {src} -> {tgt}"

    # ---- no_dangling ----
    if asserts.get("no_dangling"):
        assert all(s in names and t in names for s, t in edges), case_dir.name
        assert set(wf["connections"]) <= set(names), case_dir.name

    # ---- unique_names / unique_ids ----
    if asserts.get("unique_names"):
        assert len(set(names)) == len(names), case_dir.name
    if asserts.get("unique_ids"):
        ids = [n["id"] for n in wf["nodes"]]
        assert len(set(ids)) == len(ids), case_dir.name

    # ---- valid_after ----
    if asserts.get("valid_after"):
        assert after.is_valid, f"{case_dir.name}: {[e.to_dict() for e in after.errors]}"
        assert after.score >= before.score, case_dir.name

    # fixing is idempotent on every case
    assert fix(wf).workflow == wf, f"{case_dir.name}: second fix changed the document"

# flowmend/fixer/passes.py
"""
Whole-document fixer passes. Each pass takes the working document and the
FixContext and returns the document; pipeline.PASSES fixes their order.
"""
from __future__ import annotations

import re
import secrets
import uuid
from typing import Any, Callable, Dict, List, Optional

from flowmend.fixer import families
from flowmend.fixer.context import FixContext
from flowmend.model.expressions import CODE_KEYS, normalize_expression
from flowmend.model.schema import (
    CONNECTION_OUTPUT_RE,
    ENVELOPE_KEYS,
    HOP_KEYS,
    META_KEYS,
    NODE_KEYS,
    OPAQUE_ENVELOPE_KEYS,
    SETTINGS_KEYS,
    is_reserved_key,
)
from flowmend.model.taxonomy import NodeFamily, canonical_type, family_of, guess_type, spec_for
from flowmend.utils.graph import iter_edges

DEFAULT_WORKFLOW_NAME = "Generated Workflow"
MIN_ID_LENGTH = 5
_OUTPUT_RE = re.compile(CONNECTION_OUTPUT_RE)


# ---------- Shared helpers ----------

def coerce_ports(value: Any) -> List[List[Dict[str, Any]]]:
    """Coerce an output value into array-of-arrays of hop dicts."""
    if isinstance(value, dict):
        return [[value]]
    if not isinstance(value, list):
        return []
    if value and all(isinstance(v, dict) for v in value):
        return [list(value)]
    ports: List[List[Dict[str, Any]]] = []
    for port in value:
        if isinstance(port, dict):
            ports.append([port])
        elif isinstance(port, list):
            ports.append([h for h in port if isinstance(h, dict)])
        else:
            ports.append([])
    return ports


def _short_label(type_tag: str) -> str:
    short = type_tag.rsplit(".", 1)[-1]
    return short[:1].upper() + short[1:] if short else "Node"


def coerce_document(raw: Any, ctx: FixContext) -> Dict[str, Any]:
    """
    Bring arbitrary JSON into the minimal shape the passes rely on:
    a dict with a list of node dicts that each carry a string name and type.
    Nodes with neither are dropped.
    """
    wf = raw if isinstance(raw, dict) else {}
    if wf is not raw:
        ctx.change("document was not an object; started from an empty workflow")
    nodes_in = wf.get("nodes")
    nodes: List[Dict[str, Any]] = []
    for i, n in enumerate(nodes_in if isinstance(nodes_in, list) else []):
        if not isinstance(n, dict):
            ctx.change(f"dropped non-object node at index {i}")
            continue
        has_name = isinstance(n.get("name"), str) and n["name"].strip()
        has_type = isinstance(n.get("type"), str) and n["type"].strip()
        if not has_name and not has_type:
            ctx.change(f"dropped node at index {i} with neither name nor type")
            continue
        if not has_type:
            n["type"] = guess_type(n["name"])
            ctx.change(f'{n["name"]}: inferred type {n["type"]}')
        if not has_name:
            n["name"] = f"{_short_label(n['type'])} {i + 1}"
            ctx.change(f"named unnamed node {n['name']}")
        if not isinstance(n.get("parameters"), dict):
            n["parameters"] = {}
        nodes.append(n)
    wf["nodes"] = nodes
    if not isinstance(wf.get("connections"), dict):
        wf["connections"] = {}
    return wf


# ---------- 0) Unique names ----------

def _unique_name(base: str, taken: set) -> str:
    k = 2
    while f"{base} {k}" in taken:
        k += 1
    return f"{base} {k}"


def rename_duplicate_nodes(wf: Dict[str, Any], ctx: FixContext) -> Dict[str, Any]:
    """Later nodes sharing a name get a numeric suffix; connections keep addressing the first."""
    names: set = set()
    for n in wf["nodes"]:
        if n["name"] in names:
            new = _unique_name(n["name"], names)
            ctx.change(f'renamed duplicate node "{n["name"]}" to "{new}"')
            n["name"] = new
        names.add(n["name"])
    return wf


# ---------- 1) No-op removal ----------

def remove_noop_nodes(wf: Dict[str, Any], ctx: FixContext) -> Dict[str, Any]:
    """Drop pass-through nodes, wiring their callers straight to their targets."""
    conns = wf["connections"]
    for noop in [n for n in wf["nodes"] if family_of(n.get("type")) == NodeFamily.NOOP]:
        name = noop["name"]
        resolve = _resolver([n["name"] for n in wf["nodes"]])
        own_keys = [k for k in conns if resolve(k) == name]
        targets = [dict(hop) for k in own_keys for _s, _t, _i, hop in iter_edges({k: conns.get(k) or {}})
                   if resolve(hop.get("node")) != name]
        for k in own_keys:
            conns.pop(k)

        for src, outputs in list(conns.items()):
            if not isinstance(outputs, dict):
                continue
            for out_type, value in list(outputs.items()):
                ports = coerce_ports(value)
                rewired = []
                for port in ports:
                    new_port: List[Dict[str, Any]] = []
                    for hop in port:
                        if resolve(hop.get("node")) == name:
                            new_port.extend(dict(t) for t in targets if resolve(t.get("node")) != resolve(src))
                        else:
                            new_port.append(hop)
                    rewired.append(new_port)
                outputs[out_type] = rewired

        wf["nodes"] = [n for n in wf["nodes"] if n is not noop]
        ctx.change(f'removed No Operation node "{name}"')
        ctx.suggest(f'Removed No Operation node "{name}" and connected its neighbours directly')
    return wf


# ---------- 2) Type normalization ----------

def normalize_node_types(wf: Dict[str, Any], ctx: FixContext) -> Dict[str, Any]:
    for n in wf["nodes"]:
        canon = canonical_type(n["type"])
        if canon and canon != n["type"]:
            ctx.change(f'{n["name"]}: type "{n["type"]}" -> "{canon}"')
            n["type"] = canon
    return wf


# ---------- 3) Expression normalization ----------

def normalize_value(value: Any, key: str = "") -> Any:
    """Pure tree transform: canonical expression syntax for every template string."""
    if isinstance(value, str):
        return value if key in CODE_KEYS else normalize_expression(value)
    if isinstance(value, dict):
        return {k: normalize_value(v, k) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize_value(v, key) for v in value]
    return value


def normalize_expressions(wf: Dict[str, Any], ctx: FixContext) -> Dict[str, Any]:
    for n in wf["nodes"]:
        fixed = normalize_value(n["parameters"])
        if fixed != n["parameters"]:
            ctx.change(f'{n["name"]}: normalized expression syntax')
            n["parameters"] = fixed
    return wf


# ---------- 4) Family canonicalization ----------

def _upstream_map(wf: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """First upstream node per node, read from the connections as the rebuild pass will leave them."""
    by_name = {n["name"]: n for n in wf["nodes"]}
    upstream: Dict[str, Dict[str, Any]] = {}
    for src, _out_type, _idx, hop in iter_edges(_rebuild(wf, lambda _msg: None)):
        upstream.setdefault(hop["node"], by_name[src])
    return upstream


def canonicalize_families(wf: Dict[str, Any], ctx: FixContext) -> Dict[str, Any]:
    ctx.upstream = _upstream_map(wf)
    ctx.workflow_name = wf.get("name") if isinstance(wf.get("name"), str) else ""
    for n in wf["nodes"]:
        families.canonicalize(n, ctx)
    return wf


# ---------- 5) Envelope and node completeness ----------

def _valid_position(p: Any) -> bool:
    return (
        isinstance(p, list) and len(p) == 2
        and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in p)
    )


def _coerce_version(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            num = float(value.strip())
        except ValueError:
            return None
        return int(num) if num.is_integer() else num
    return None


def complete_nodes(wf: Dict[str, Any], ctx: FixContext) -> None:
    ids: set = set()
    for i, n in enumerate(wf["nodes"]):
        nid = n.get("id")
        if not isinstance(nid, str) or len(nid) < MIN_ID_LENGTH or nid in ids:
            n["id"] = str(uuid.uuid4())
            ctx.change(f'{n["name"]}: assigned node id')
        ids.add(n["id"])

        pos = n.get("position")
        if isinstance(pos, dict) and {"x", "y"} <= set(pos):
            pos = [pos["x"], pos["y"]]
        if isinstance(pos, tuple):
            pos = list(pos)
        if not _valid_position(pos):
            pos = [250 + i * 200, 300]
            ctx.change(f'{n["name"]}: assigned position')
        n["position"] = pos

        spec = spec_for(n["type"])
        version = _coerce_version(n.get("typeVersion"))
        if spec and spec.exact_version:
            version = spec.version
        elif version is None:
            version = spec.version if spec else 1
        if version != n.get("typeVersion"):
            n["typeVersion"] = version


def complete_envelope(wf: Dict[str, Any], ctx: FixContext) -> Dict[str, Any]:
    complete_nodes(wf, ctx)

    if not isinstance(wf.get("name"), str) or not wf["name"].strip():
        wf["name"] = DEFAULT_WORKFLOW_NAME
        ctx.change("set default workflow name")

    settings = wf.get("settings")
    if not isinstance(settings, dict):
        settings = wf["settings"] = {}
    settings.setdefault("executionOrder", "v1")

    meta = wf.get("meta")
    if not isinstance(meta, dict):
        meta = wf["meta"] = {}
    if not isinstance(meta.get("instanceId"), str) or not meta["instanceId"]:
        meta["instanceId"] = secrets.token_hex(32)

    if not isinstance(wf.get("versionId"), str) or not wf["versionId"]:
        wf["versionId"] = str(uuid.uuid4())

    if not isinstance(wf.get("pinData"), dict):
        wf["pinData"] = {}
    return wf


# ---------- 6) Connection rebuild ----------

def _resolver(names: List[str]):
    exact = set(names)
    lowered: Dict[str, List[str]] = {}
    for nm in names:
        lowered.setdefault(nm.strip().lower(), []).append(nm)

    def resolve(ref: Any) -> Optional[str]:
        if not isinstance(ref, str):
            return None
        if ref in exact:
            return ref
        hits = lowered.get(ref.strip().lower(), [])
        return hits[0] if len(hits) == 1 else None

    return resolve


def _clean_hop(hop: Dict[str, Any], out_type: str, target: str) -> Dict[str, Any]:
    idx = hop.get("index", 0)
    if isinstance(idx, str) and idx.isdigit():
        idx = int(idx)
    if not isinstance(idx, int) or isinstance(idx, bool) or idx < 0:
        idx = 0
    hop_type = hop.get("type")
    return {"node": target, "type": hop_type if isinstance(hop_type, str) and hop_type else out_type, "index": idx}


def _rebuild(wf: Dict[str, Any], note: Callable[[str], None]) -> Dict[str, Any]:
    """
    Every output becomes an array of arrays, every hop names an existing node,
    and sources or outputs left with no hops are dropped. Does not modify `wf`.
    """
    resolve = _resolver([n["name"] for n in wf["nodes"]])
    rebuilt: Dict[str, Dict[str, List[List[Dict[str, Any]]]]] = {}

    for src, outputs in wf["connections"].items():
        src_name = resolve(src)
        if src_name is None:
            note(f'dropped connections from missing node "{src}"')
            continue
        if isinstance(outputs, list):
            outputs = {"main": outputs}
        if not isinstance(outputs, dict):
            note(f'dropped malformed connections of "{src}"')
            continue

        for out_type, value in outputs.items():
            if not isinstance(out_type, str) or not _OUTPUT_RE.match(out_type):
                note(f'dropped unknown output "{out_type}" of "{src}"')
                continue
            ports: List[List[Dict[str, Any]]] = []
            for port in coerce_ports(value):
                clean: List[Dict[str, Any]] = []
                for hop in port:
                    target = resolve(hop.get("node"))
                    if target is None:
                        note(f'dropped dangling connection "{src}" -> "{hop.get("node")}"')
                        continue
                    c = _clean_hop(hop, out_type, target)
                    if c not in clean:
                        clean.append(c)
                ports.append(clean)
            while ports and not ports[-1]:
                ports.pop()
            if not ports:
                continue
            merged = rebuilt.setdefault(src_name, {}).setdefault(out_type, [])
            for i, port in enumerate(ports):
                if i < len(merged):
                    merged[i].extend(h for h in port if h not in merged[i])
                else:
                    merged.append(port)
    return rebuilt


def rebuild_connections(wf: Dict[str, Any], ctx: FixContext) -> Dict[str, Any]:
    wf["connections"] = _rebuild(wf, ctx.change)
    return wf


# ---------- 7) Allow-list strip ----------

def strip_reserved(value: Any) -> Any:
    """Pure tree transform dropping reserved / generation-only keys at every depth."""
    if isinstance(value, dict):
        return {k: strip_reserved(v) for k, v in value.items() if not is_reserved_key(k)}
    if isinstance(value, list):
        return [strip_reserved(v) for v in value]
    return value


def _keep(d: Dict[str, Any], allowed, where: str, ctx: FixContext) -> Dict[str, Any]:
    dropped = [k for k in d if k not in allowed]
    if dropped:
        ctx.change(f"{where}: removed non-standard fields {sorted(dropped)}")
    return {k: v for k, v in d.items() if k in allowed}


def strip_unknown_fields(wf: Dict[str, Any], ctx: FixContext) -> Dict[str, Any]:
    out = _keep(wf, ENVELOPE_KEYS, "workflow", ctx)
    nodes = []
    for n in out["nodes"]:
        node = _keep(n, NODE_KEYS, n["name"], ctx)
        node["parameters"] = strip_reserved(node.get("parameters") or {})
        if "credentials" in node:
            creds = strip_reserved(node["credentials"])
            if isinstance(creds, dict) and creds:
                node["credentials"] = creds
            else:
                node.pop("credentials")
        nodes.append(node)
    out["nodes"] = nodes
    out["settings"] = _keep(out["settings"], SETTINGS_KEYS, "settings", ctx)
    out["meta"] = _keep(out["meta"], META_KEYS, "meta", ctx)
    for key in OPAQUE_ENVELOPE_KEYS:
        if key in out:
            out[key] = strip_reserved(out[key])
    for src, outputs in out["connections"].items():
        for out_type, ports in outputs.items():
            outputs[out_type] = [[{k: v for k, v in hop.items() if k in HOP_KEYS} for hop in port] for port in ports]
    return out


# ---------- 8) Required defaults ----------

def inject_required_defaults(wf: Dict[str, Any], ctx: FixContext) -> Dict[str, Any]:
    for n in wf["nodes"]:
        families.inject_defaults(n, ctx)
    return wf

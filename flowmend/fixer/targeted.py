# flowmend/fixer/targeted.py
"""
Targeted repairs keyed by FixStrategy. Each one uses the classification's
captures (node names, parameter names) to fix exactly what the engine
complained about; the generic pipeline runs afterwards.
"""
import difflib
import re
from typing import Any, Callable, Dict, List, Optional

from flowmend.fixer.context import FixContext
from flowmend.model.results import ErrorClassification, FixStrategy
from flowmend.model.taxonomy import HTTP_METHODS, guess_type
from flowmend.utils.graph import build_graph, cycle_back_edge

Strategy = Callable[[Dict[str, Any], List[str], FixContext], None]

_STRATEGIES: Dict[FixStrategy, Strategy] = {}

# Values used when the engine reports a required parameter as missing.
MISSING_PARAMETER_DEFAULTS: Dict[str, Any] = {
    "url": "https://example.com",
    "method": "GET",
    "httpMethod": "POST",
    "path": "webhook",
    "channel": "#general",
    "text": "",
    "operation": "",
    "labelIds": ["INBOX"],
    "options": {},
    "otherOptions": {},
    "values": {"string": []},
    "conditions": {"conditions": []},
}


def strategy(kind: FixStrategy):
    def deco(fn: Strategy) -> Strategy:
        _STRATEGIES[kind] = fn
        return fn
    return deco


def _nodes(wf: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [n for n in wf.get("nodes") or [] if isinstance(n, dict)]


def _node(wf: Dict[str, Any], name: Optional[str]) -> Optional[Dict[str, Any]]:
    for n in _nodes(wf):
        if n.get("name") == name:
            return n
    return None


def _closest(name: str, candidates: List[str]) -> Optional[str]:
    lowered = {c.lower(): c for c in candidates}
    if name.lower() in lowered:
        return lowered[name.lower()]
    hits = difflib.get_close_matches(name, candidates, n=1, cutoff=0.8)
    return hits[0] if hits else None


def _cap(captures: List[str], i: int) -> Optional[str]:
    return captures[i] if len(captures) > i else None


# ---------- Strategies ----------

@strategy(FixStrategy.FIX_NODE_TYPE)
def fix_node_type(wf, captures, ctx):
    bad = _cap(captures, 0)
    for n in _nodes(wf):
        t = n.get("type")
        if not isinstance(t, str):
            continue
        raw_short = t.rsplit(".", 1)[-1]
        if bad is None or bad.lower() in (t.lower(), raw_short.lower()):
            fixed = guess_type(t)
            if fixed != t:
                ctx.change(f'{n.get("name")}: node type "{t}" -> "{fixed}"')
                n["type"] = fixed


@strategy(FixStrategy.FIX_PARAMETERS)
def fix_parameters(wf, captures, ctx):
    param, node_name = _cap(captures, 0), _cap(captures, 1)
    node = _node(wf, node_name)
    if node is None or not param:
        return
    params = node.get("parameters") if isinstance(node.get("parameters"), dict) else {}
    if param in params:
        params.pop(param)
        ctx.change(f'{node_name}: removed invalid parameter "{param}"')
    options = params.get("options")
    if isinstance(options, dict) and param in options:
        options.pop(param)
        ctx.change(f'{node_name}: removed invalid option "{param}"')


@strategy(FixStrategy.ADD_MISSING_PARAMETERS)
def add_missing_parameters(wf, captures, ctx):
    param, node_name = _cap(captures, 0), _cap(captures, 1)
    node = _node(wf, node_name)
    if node is None or not param:
        return
    params = node.setdefault("parameters", {})
    if not isinstance(params, dict):
        params = node["parameters"] = {}
    if param not in params:
        default = MISSING_PARAMETER_DEFAULTS.get(param, "")
        params[param] = default.copy() if isinstance(default, (dict, list)) else default
        ctx.change(f'{node_name}: added missing parameter "{param}"')


@strategy(FixStrategy.FIX_CONNECTIONS)
def fix_connections(wf, captures, ctx):
    """Retarget hops pointing at a missing node to the closest existing name, else drop them."""
    missing = _cap(captures, 1)
    names = [n.get("name") for n in _nodes(wf) if isinstance(n.get("name"), str)]
    conns = wf.get("connections") if isinstance(wf.get("connections"), dict) else {}
    for src, outputs in conns.items():
        if not isinstance(outputs, dict):
            continue
        for ports in outputs.values():
            if not isinstance(ports, list):
                continue
            for port in ports:
                if not isinstance(port, list):
                    continue
                for hop in list(port):
                    tgt = hop.get("node") if isinstance(hop, dict) else None
                    if tgt in names or (missing is not None and tgt != missing):
                        continue
                    new = _closest(str(tgt), names) if tgt else None
                    if new:
                        hop["node"] = new
                        ctx.change(f'connection "{src}" -> "{tgt}" retargeted to "{new}"')
                    else:
                        port.remove(hop)
                        ctx.change(f'connection "{src}" -> "{tgt}" removed')


@strategy(FixStrategy.FIX_CREDENTIALS)
def fix_credentials(wf, captures, ctx):
    node_name = _cap(captures, 0)
    for n in _nodes(wf):
        if node_name and n.get("name") != node_name:
            continue
        if "credentials" in n:
            n.pop("credentials")
            ctx.change(f'{n.get("name")}: removed invalid credentials')
            ctx.suggest(f'Node "{n.get("name")}": connect credentials in n8n after import')


@strategy(FixStrategy.FIX_CREDENTIAL_REFERENCES)
def fix_credential_references(wf, captures, ctx):
    cred_name = _cap(captures, 0)
    for n in _nodes(wf):
        creds = n.get("credentials")
        if not isinstance(creds, dict):
            continue
        for ctype, ref in list(creds.items()):
            ref_name = ref.get("name") if isinstance(ref, dict) else ref
            if cred_name is None or ref_name == cred_name or ctype == cred_name:
                creds.pop(ctype)
                ctx.change(f'{n.get("name")}: removed credential reference "{ref_name}"')
        if not creds:
            n.pop("credentials")


@strategy(FixStrategy.FIX_DUPLICATE_NAMES)
def fix_duplicate_names(wf, captures, ctx):
    seen = set()
    for n in _nodes(wf):
        name = n.get("name")
        if name in seen:
            k = 2
            while f"{name} {k}" in seen:
                k += 1
            n["name"] = f"{name} {k}"
            ctx.change(f'renamed duplicate node "{name}" to "{n["name"]}"')
        seen.add(n["name"])


def _balance_template(text: str) -> str:
    """Make an unbalanced template a literal: drop stray braces and the '=' marker."""
    if text.count("{{") == text.count("}}") and text.count("{") == text.count("}"):
        return text
    body = text[1:] if text.startswith("=") else text
    return re.sub(r"[{}]", "", body).strip()


@strategy(FixStrategy.FIX_EXPRESSIONS)
def fix_expressions(wf, captures, ctx):
    param = _cap(captures, 0)

    def walk(value: Any, key: str) -> Any:
        if isinstance(value, dict):
            return {k: walk(v, k) for k, v in value.items()}
        if isinstance(value, list):
            return [walk(v, key) for v in value]
        if isinstance(value, str) and (param is None or key == param):
            return _balance_template(value)
        return value

    for n in _nodes(wf):
        if isinstance(n.get("parameters"), dict):
            fixed = walk(n["parameters"], "")
            if fixed != n["parameters"]:
                ctx.change(f'{n.get("name")}: repaired unbalanced expression')
                n["parameters"] = fixed


@strategy(FixStrategy.FIX_MISSING_REFERENCES)
def fix_missing_references(wf, captures, ctx):
    """$node["Gone"] -> closest existing node, else fall back to the current item ($json)."""
    missing = _cap(captures, 0)
    if not missing:
        return
    names = [n.get("name") for n in _nodes(wf) if isinstance(n.get("name"), str)]
    target = _closest(missing, names)
    ref_re = re.compile(r"""\$node\[\s*["']%s["']\s*\](\.json)?|\$\(\s*["']%s["']\s*\)(\.item\.json)?"""
                        % (re.escape(missing), re.escape(missing)))

    def repl(m: re.Match) -> str:
        if target:
            return f'$node["{target}"]' + (m.group(1) or m.group(2) or "")
        return "$json"

    def walk(value: Any) -> Any:
        if isinstance(value, dict):
            return {k: walk(v) for k, v in value.items()}
        if isinstance(value, list):
            return [walk(v) for v in value]
        if isinstance(value, str):
            return ref_re.sub(repl, value)
        return value

    for n in _nodes(wf):
        if isinstance(n.get("parameters"), dict):
            fixed = walk(n["parameters"])
            if fixed != n["parameters"]:
                ctx.change(f'{n.get("name")}: rewrote reference to missing node "{missing}"')
                n["parameters"] = fixed


@strategy(FixStrategy.FIX_CIRCULAR_REFERENCES)
def fix_circular_references(wf, captures, ctx):
    edge = cycle_back_edge(build_graph(wf))
    if edge is None:
        return
    src, tgt = edge
    outputs = (wf.get("connections") or {}).get(src)
    if not isinstance(outputs, dict):
        return
    for ports in outputs.values():
        if not isinstance(ports, list):
            continue
        for port in ports:
            if isinstance(port, list):
                port[:] = [h for h in port if not (isinstance(h, dict) and h.get("node") == tgt)]
    ctx.change(f'removed cycle-closing connection "{src}" -> "{tgt}"')


@strategy(FixStrategy.FIX_WEBHOOK_METHOD)
def fix_webhook_method(wf, captures, ctx):
    for n in _nodes(wf):
        if not str(n.get("type", "")).lower().endswith("webhook"):
            continue
        params = n.setdefault("parameters", {})
        method = params.get("httpMethod")
        fixed = method.strip().upper() if isinstance(method, str) else "POST"
        if fixed not in HTTP_METHODS:
            fixed = "POST"
        if fixed != method:
            params["httpMethod"] = fixed
            ctx.change(f'{n.get("name")}: webhook method set to {fixed}')


@strategy(FixStrategy.FIX_JSON_STRUCTURE)
@strategy(FixStrategy.REGENERATE)
def _no_targeted_fix(wf, captures, ctx):
    """Structure is rebuilt by the generic passes; regeneration belongs to the repair loop."""


# ---------- Public API ----------

def apply_strategy(wf: Dict[str, Any], classification: ErrorClassification, ctx: FixContext) -> Dict[str, Any]:
    fn = _STRATEGIES.get(classification.fix_strategy)
    if fn is not None:
        fn(wf, list(classification.captures), ctx)
    return wf


def supported_strategies() -> List[FixStrategy]:
    return sorted(_STRATEGIES, key=lambda s: s.value)

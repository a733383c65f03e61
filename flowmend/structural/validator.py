# flowmend/structural/validator.py
"""
Rule-based structural validation of n8n workflow documents.

validate() never touches the network and never raises for a bad document:
schema failures short-circuit into a single critical issue with score 0,
everything else is accumulated as errors / warnings / suggestions and
folded into a 0-100 score.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from jsonschema import Draft7Validator

from flowmend.model.document import (
    ConditionalParameters,
    HttpParameters,
    MessagingParameters,
    Node,
    WebhookParameters,
    WorkflowDocument,
)
from flowmend.model.expressions import CODE_KEYS, has_legacy_access, is_template, needs_prefix
from flowmend.model.results import Severity, ValidationIssue, ValidationResult
from flowmend.model.schema import (
    ENVELOPE_KEYS,
    NODE_KEYS,
    SETTINGS_KEYS,
    WORKFLOW_SCHEMA,
    is_reserved_key,
)
from flowmend.model.taxonomy import (
    CONDITION_OPERATIONS,
    CONDITION_PLACEHOLDERS,
    HTTP_METHODS,
    NodeFamily,
    canonical_type,
    is_known_type,
    is_trigger,
    spec_for,
)
from flowmend.structural.advice import workflow_advice
from flowmend.structural.complexity import COMPLEXITY_BANDS, compute_complexity, is_balanced, within_band
from flowmend.utils.graph import build_graph, find_cycle_path, orphaned_nodes

_SCHEMA_VALIDATOR = Draft7Validator(WORKFLOW_SCHEMA)

# Score weights
W_CRITICAL = 20
W_ERROR = 10
W_WARNING = 5
BONUS_CONTINUE_ON_FAIL = 5
BONUS_EXECUTION_ORDER = 3
BONUS_BALANCED = 5

# $node["X"], $node['X'], $('X'), $("X")
_NODE_REF_RES = (
    re.compile(r"""\$node\[\s*["']([^"']+)["']\s*\]"""),
    re.compile(r"""\$\(\s*["']([^"']+)["']\s*\)"""),
)
_SLACK_CHANNEL_RE = re.compile(r"^[#@][\w.\-]+$")


@dataclass
class ValidationOptions:
    require_error_handling: bool = False
    required_apps: List[str] = field(default_factory=list)
    complexity_target: Optional[str] = None


# ---------- Helpers ----------

class _Collector:
    def __init__(self):
        self.errors: List[ValidationIssue] = []
        self.warnings: List[ValidationIssue] = []
        self.suggestions: List[str] = []

    def add(self, kind: str, message: str, location: Optional[str] = None,
            severity: Severity = Severity.ERROR) -> None:
        issue = ValidationIssue(kind=kind, message=message, location=location, severity=severity)
        if severity == Severity.WARNING:
            self.warnings.append(issue)
        else:
            self.errors.append(issue)

    def warn(self, kind: str, message: str, location: Optional[str] = None) -> None:
        self.add(kind, message, location, Severity.WARNING)

    def suggest(self, text: str) -> None:
        if text not in self.suggestions:
            self.suggestions.append(text)


def _iter_strings(value: Any, key: str = "") -> Iterator[Tuple[str, str]]:
    """Yield (parameter key, string value) pairs, recursively."""
    if isinstance(value, str):
        yield key, value
    elif isinstance(value, dict):
        for k, v in value.items():
            yield from _iter_strings(v, k)
    elif isinstance(value, list):
        for v in value:
            yield from _iter_strings(v, key)


def _loc(node: Node) -> str:
    return f"nodes[{node.name}]"


def _invalid(kind: str, message: str) -> ValidationResult:
    issue = ValidationIssue(kind=kind, message=message, location=None, severity=Severity.CRITICAL)
    return ValidationResult(is_valid=False, errors=[issue], warnings=[], suggestions=[], score=0)


# ---------- 1) Schema ----------

def _schema_error(workflow: Any) -> Optional[Tuple[str, str]]:
    if not isinstance(workflow, dict):
        return "INVALID_DOCUMENT", f"Workflow must be a JSON object, got {type(workflow).__name__}"
    errs = sorted(_SCHEMA_VALIDATOR.iter_errors(workflow), key=lambda e: list(e.absolute_path))
    if not errs:
        return None
    first = errs[0]
    where = "/".join(str(p) for p in first.absolute_path) or "<root>"
    return "SCHEMA_VIOLATION", f"Schema validation error at {where}: {first.message}"


# ---------- 2) Structure ----------

def _check_envelope(workflow: Dict[str, Any], out: _Collector) -> None:
    for key in workflow:
        if is_reserved_key(key):
            out.add("NON_STANDARD_FIELD", f'Top-level field "{key}" is generation metadata and must be removed', key)
        elif key not in ENVELOPE_KEYS:
            out.warn("NON_STANDARD_FIELD", f'Top-level field "{key}" is not part of the workflow format', key)

    settings = workflow.get("settings")
    if settings is not None and not isinstance(settings, dict):
        out.add("INVALID_SETTINGS", "settings must be an object", "settings")
    elif isinstance(settings, dict):
        for key in settings:
            if key not in SETTINGS_KEYS:
                out.add("UNRECOGNIZED_SETTING", f'Unrecognized settings key "{key}"', f"settings.{key}")


def _check_conditional(node: Node, out: _Collector) -> None:
    params = node.parameters
    assert isinstance(params, ConditionalParameters)
    if not params.conditions:
        out.add("MISSING_IF_CONDITIONS", f'IF node "{node.name}" has no conditions', _loc(node))
        return
    for cond in params.conditions:
        op = cond.get("operation")
        if op is not None and op not in CONDITION_OPERATIONS:
            out.warn("INVALID_CONDITION_OPERATION", f'IF node "{node.name}" uses unknown operation "{op}"', _loc(node))
        left = cond.get("value1", cond.get("leftValue"))
        if isinstance(left, str) and left.strip() in CONDITION_PLACEHOLDERS:
            out.warn("GENERIC_CONDITION", f'IF node "{node.name}" compares a placeholder value', _loc(node))


def _check_family(node: Node, out: _Collector) -> None:
    params = node.parameters
    family = node.family

    if family == NodeFamily.CONDITIONAL:
        _check_conditional(node, out)
    elif isinstance(params, MessagingParameters) and node.type.endswith(".slack"):
        if params.channel is not None and not _SLACK_CHANNEL_RE.match(params.channel) \
                and not params.channel.startswith("="):
            out.add("INVALID_CHANNEL", f'Slack node "{node.name}": channel "{params.channel}" '
                    'must be "#channel" or "@user"', _loc(node))
    elif isinstance(params, HttpParameters):
        if not params.url:
            out.add("MISSING_HTTP_CONFIG", f'HTTP Request node "{node.name}" has no url', _loc(node))
        if params.method is not None and str(params.method).upper() not in HTTP_METHODS:
            out.add("INVALID_HTTP_METHOD", f'HTTP Request node "{node.name}" uses method "{params.method}"', _loc(node))
    elif isinstance(params, WebhookParameters):
        if params.http_method is not None and params.http_method not in HTTP_METHODS:
            out.add("INVALID_WEBHOOK_METHOD", f'Webhook node "{node.name}" uses invalid HTTP method '
                    f'"{params.http_method}"', _loc(node))
        if not params.path:
            out.warn("MISSING_WEBHOOK_PATH", f'Webhook node "{node.name}" has no path', _loc(node))
    elif family == NodeFamily.NOOP:
        out.warn("UNNECESSARY_NODE", f'Node "{node.name}" is a No Operation node', _loc(node))
    elif family == NodeFamily.SET and "options" in params.raw:
        out.warn("INVALID_PARAMETER", f'Set node "{node.name}" carries an "options" block', _loc(node))


def _check_expressions(node: Node, names: set, out: _Collector) -> None:
    for key, text in _iter_strings(node.parameters.raw):
        if "$" not in text:
            continue
        for rx in _NODE_REF_RES:
            for ref in rx.findall(text):
                if ref not in names:
                    out.add("INVALID_NODE_REFERENCE",
                            f'Node "{node.name}" references non-existent node "{ref}"', _loc(node))
        if key not in CODE_KEYS and (needs_prefix(text) or (is_template(text) and has_legacy_access(text))):
            out.warn("LEGACY_EXPRESSION", f'Node "{node.name}" uses legacy expression syntax', _loc(node))


def _check_nodes(raw: Dict[str, Any], doc: WorkflowDocument, out: _Collector) -> None:
    seen_names: Dict[str, int] = {}
    seen_ids: Dict[str, int] = {}
    names = set(doc.node_names())

    for raw_node, node in zip([n for n in raw["nodes"] if isinstance(n, dict)], doc.nodes):
        seen_names[node.name] = seen_names.get(node.name, 0) + 1
        seen_ids[node.id] = seen_ids.get(node.id, 0) + 1

        if not node.has_valid_position:
            out.warn("INVALID_POSITION", f'Node "{node.name}" has no valid [x, y] position', _loc(node))

        if not is_known_type(node.type):
            out.warn("UNKNOWN_NODE_TYPE", f'Node "{node.name}" has unrecognized type "{node.type}"', _loc(node))
        else:
            canon = canonical_type(node.type)
            if canon and canon != node.type:
                out.warn("NON_CANONICAL_NODE_TYPE",
                         f'Node "{node.name}" type "{node.type}" should be spelled "{canon}"', _loc(node))

        spec = spec_for(node.type)
        if node.type_version is None:
            out.warn("MISSING_TYPE_VERSION", f'Node "{node.name}" has no typeVersion', _loc(node))
        elif spec and spec.exact_version and node.type_version != spec.version:
            out.warn("TYPE_VERSION_MISMATCH",
                     f'Node "{node.name}" requires typeVersion {spec.version}, got {node.type_version}', _loc(node))

        if spec and spec.credential and not node.credentials:
            out.warn("MISSING_CREDENTIALS",
                     f'Node "{node.name}" calls a third-party service but has no credentials', _loc(node))

        for key in raw_node:
            if key == "webhookId":
                out.add("NON_STANDARD_FIELD", f'Node "{node.name}" carries webhookId, which n8n assigns itself',
                        _loc(node))
            elif key not in NODE_KEYS:
                out.warn("NON_STANDARD_FIELD", f'Node "{node.name}" has non-standard field "{key}"', _loc(node))

        _check_family(node, out)
        _check_expressions(node, names, out)

    for name, count in seen_names.items():
        if count > 1:
            out.add("DUPLICATE_NODE_NAME", f'Duplicate node name: "{name}" ({count} nodes)', f"nodes[{name}]")
    for nid, count in seen_ids.items():
        if count > 1:
            out.warn("DUPLICATE_NODE_ID", f'Node id "{nid}" is used by {count} nodes', "nodes")


def _check_connections(doc: WorkflowDocument, out: _Collector) -> None:
    names = set(doc.node_names())
    for src, outputs in doc.connections.items():
        loc = f"connections.{src}"
        if src not in names:
            out.add("INVALID_CONNECTION_SOURCE", f'Connection source "{src}" is not a node', loc)
        if not isinstance(outputs, dict):
            out.add("INVALID_CONNECTION_FORMAT", f'Connections of "{src}" must be an object', loc)
            continue
        for out_type, ports in outputs.items():
            if not isinstance(ports, list) or not all(isinstance(p, list) for p in ports):
                out.add("INVALID_OUTPUT_FORMAT", f'Output "{out_type}" of "{src}" must be an array of arrays', loc)

    for edge in doc.edges():
        if edge.target not in names:
            out.add("INVALID_CONNECTION_TARGET",
                    f'Node "{edge.source}" references non-existent node "{edge.target}"', f"connections.{edge.source}")


# ---------- 3) Logic ----------

def _check_logic(raw: Dict[str, Any], doc: WorkflowDocument, out: _Collector) -> None:
    triggers = [n.name for n in doc.nodes if is_trigger(n.type)]
    if not triggers:
        out.warn("NO_TRIGGER", "Workflow has no trigger node")
    elif len(triggers) > 1:
        out.suggest(f"Workflow has {len(triggers)} triggers ({', '.join(triggers)}); usually one is expected")

    G = build_graph(raw)
    for name in orphaned_nodes(G):
        out.warn("ORPHANED_NODE", f'Node "{name}" is not connected to any other node', f"nodes[{name}]")

    cycle = find_cycle_path(G)
    if cycle:
        out.warn("POTENTIAL_LOOP", "Connection cycle detected: " + " -> ".join(cycle), "connections")


# ---------- 4) Policy ----------

def _has_error_handling(raw: Dict[str, Any]) -> bool:
    settings = raw.get("settings") if isinstance(raw.get("settings"), dict) else {}
    if settings.get("errorWorkflow"):
        return True
    for n in raw["nodes"]:
        if isinstance(n, dict) and (n.get("continueOnFail") or n.get("onError") in ("continueRegularOutput",
                                                                                   "continueErrorOutput")):
            return True
        if isinstance(n, dict) and str(n.get("type", "")).endswith("errorTrigger"):
            return True
    return False


def _check_policy(raw: Dict[str, Any], doc: WorkflowDocument, options: ValidationOptions,
                  complexity: int, out: _Collector) -> None:
    if options.require_error_handling and not _has_error_handling(raw):
        out.warn("NO_ERROR_HANDLING", "No node continues on failure and no error workflow is set")

    if options.required_apps:
        present = " ".join(n.type.lower() for n in doc.nodes)
        missing = [app for app in options.required_apps if app.lower() not in present]
        if missing:
            out.add("MISSING_REQUIRED_APPS", f"Workflow is missing required apps: {', '.join(missing)}")

    level = options.complexity_target
    if level:
        if level not in COMPLEXITY_BANDS:
            out.warn("COMPLEXITY_MISMATCH", f'Unknown complexity level "{level}"')
        elif not within_band(complexity, level):
            lo, hi = COMPLEXITY_BANDS[level]
            out.warn("COMPLEXITY_MISMATCH", f"Complexity {complexity} is outside the {level} band [{lo}, {hi}]")


# ---------- 5) Scoring ----------

def _score(raw: Dict[str, Any], out: _Collector, complexity: int) -> int:
    critical = sum(1 for e in out.errors if e.severity == Severity.CRITICAL)
    errors = len(out.errors) - critical
    score = 100 - W_CRITICAL * critical - W_ERROR * errors - W_WARNING * len(out.warnings)

    if any(isinstance(n, dict) and n.get("continueOnFail") for n in raw["nodes"]):
        score += BONUS_CONTINUE_ON_FAIL
    settings = raw.get("settings") if isinstance(raw.get("settings"), dict) else {}
    if settings.get("executionOrder") == "v1":
        score += BONUS_EXECUTION_ORDER
    if is_balanced(complexity):
        score += BONUS_BALANCED
    return max(0, min(100, score))


# ---------- Public API ----------

def validate(workflow: Any, options: Optional[ValidationOptions] = None) -> ValidationResult:
    """
    Validate a workflow document. Always returns a fresh ValidationResult.
    """
    options = options or ValidationOptions()
    failure = _schema_error(workflow)
    if failure:
        return _invalid(*failure)

    out = _Collector()
    doc = WorkflowDocument.from_dict(workflow)

    _check_envelope(workflow, out)
    _check_nodes(workflow, doc, out)
    _check_connections(doc, out)
    _check_logic(workflow, doc, out)

    complexity = compute_complexity(workflow)["score"]
    _check_policy(workflow, doc, options, complexity, out)

    for text in workflow_advice(workflow):
        out.suggest(text)

    return ValidationResult(
        is_valid=not out.errors,
        errors=list(out.errors),
        warnings=list(out.warnings),
        suggestions=list(out.suggestions),
        score=_score(workflow, out, complexity),
        complexity=complexity,
    )

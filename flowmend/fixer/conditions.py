# flowmend/fixer/conditions.py
"""
Context-aware repair of IF-node conditions.

Generated IF nodes often carry placeholder operands ("value1", empty strings)
or no condition at all. The node name and the upstream node type usually say
what was meant ("Is Urgent?" after a Gmail trigger), so a concrete condition
is inferred from them.
"""
import re
from typing import Any, Dict, List, Optional

from flowmend.model.taxonomy import CONDITION_OPERATIONS, CONDITION_PLACEHOLDERS

# Operation spellings seen in generated documents -> n8n operation.
OPERATION_ALIASES = {
    "equals": "equal",
    "eq": "equal",
    "==": "equal",
    "notequals": "notEqual",
    "not_equal": "notEqual",
    "!=": "notEqual",
    "largerthan": "larger",
    "greaterthan": "larger",
    "greater": "larger",
    ">": "larger",
    "largerorequal": "largerEqual",
    "greaterthanorequal": "largerEqual",
    ">=": "largerEqual",
    "smallerthan": "smaller",
    "lessthan": "smaller",
    "less": "smaller",
    "<": "smaller",
    "lessthanorequal": "smallerEqual",
    "<=": "smallerEqual",
    "includes": "contains",
    "notincludes": "notContains",
    "isempty": "isEmpty",
    "isnotempty": "isNotEmpty",
}

_INTENT_KEYWORDS = [
    ("urgent", ("urgent", "emergency", "asap")),
    ("priority", ("priority", "important")),
    ("label", ("label", "tag")),
    ("rating", ("rating", "score", "stars")),
    ("status", ("status", "state")),
    ("amount", ("amount", "price", "cost", "total")),
]

# intent -> source -> condition; "default" applies to any source.
_PATTERNS: Dict[str, Dict[str, Dict[str, Any]]] = {
    "urgent": {
        "gmail": {"leftValue": '={{ $json["headers"]["subject"] }}', "rightValue": "urgent", "operation": "contains"},
        "default": {"leftValue": '={{ $json["subject"] }}', "rightValue": "urgent", "operation": "contains"},
    },
    "priority": {
        "gmail": {"leftValue": '={{ $json["headers"]["subject"] }}', "rightValue": "priority", "operation": "contains"},
        "default": {"leftValue": '={{ $json["priority"] }}', "rightValue": "high", "operation": "equal"},
    },
    "rating": {
        "default": {"leftValue": '={{ $json["rating"] }}', "rightValue": 4, "operation": "largerEqual"},
    },
    "status": {
        "default": {"leftValue": '={{ $json["status"] }}', "rightValue": "active", "operation": "equal"},
    },
    "amount": {
        "default": {"leftValue": '={{ $json["amount"] }}', "rightValue": 100, "operation": "larger"},
    },
}

DEFAULT_CONDITION = {"leftValue": '={{ $json["value"] }}', "rightValue": "", "operation": "isNotEmpty"}

# Gmail messages expose these under headers.*
_GMAIL_HEADER_FIELDS = ("subject", "from", "to", "cc", "date")
_GMAIL_FIELD_RE = re.compile(r'\$json(?:\.(%s)\b|\["(%s)"\])' % ("|".join(_GMAIL_HEADER_FIELDS),
                                                                 "|".join(_GMAIL_HEADER_FIELDS)))
_QUOTED_TERM_RE = re.compile(r"""["']([^"']+)["']""")
_STOP_WORDS = frozenset({"if", "is", "check", "has", "contains", "label", "labelled", "labeled", "with",
                         "the", "a", "an", "subject", "from", "sender", "email", "?"})


def detect_intent(node_name: str, workflow_name: str = "") -> str:
    text = f"{node_name} {workflow_name}".lower()
    for intent, words in _INTENT_KEYWORDS:
        if any(w in text for w in words):
            return intent
    return "default"


def source_context(upstream: Optional[Dict[str, Any]]) -> str:
    t = str((upstream or {}).get("type", "")).lower()
    for needle, ctx in (("gmail", "gmail"), ("googlesheets", "sheets"), ("webhook", "webhook"), ("form", "form")):
        if needle in t:
            return ctx
    return "default"


def search_term(node_name: str) -> str:
    """Pull the thing being tested for out of a node name: a quoted term, else the last meaningful word."""
    quoted = _QUOTED_TERM_RE.search(node_name)
    if quoted:
        return quoted.group(1)
    words = [w for w in re.split(r"[^\w]+", node_name.lower()) if w and w not in _STOP_WORDS]
    return words[-1] if words else ""


def infer_condition(node_name: str, upstream: Optional[Dict[str, Any]], workflow_name: str = "") -> Dict[str, Any]:
    intent = detect_intent(node_name, workflow_name)
    source = source_context(upstream)
    lower = node_name.lower()

    if intent == "label":
        return {"leftValue": '={{ $json["labelIds"].join(",") }}', "rightValue": search_term(node_name).upper(),
                "operation": "contains"}
    pattern = _PATTERNS.get(intent, {})
    chosen = pattern.get(source) or pattern.get("default")
    if chosen:
        return dict(chosen)

    if source == "gmail":
        for word, header in (("subject", "subject"), ("from", "from"), ("sender", "from")):
            if word in lower:
                return {"leftValue": '={{ $json["headers"]["%s"] }}' % header, "rightValue": search_term(node_name),
                        "operation": "contains"}
        if "attachment" in lower:
            return {"leftValue": '={{ $json["attachments"].length }}', "rightValue": 0, "operation": "larger"}
    return dict(DEFAULT_CONDITION)


def normalize_operation(op: Any) -> str:
    if not isinstance(op, str) or not op.strip():
        return "equal"
    if op in CONDITION_OPERATIONS:
        return op
    key = op.strip().replace(" ", "").lower()
    alias = OPERATION_ALIASES.get(key)
    if alias:
        return alias
    for canon in CONDITION_OPERATIONS:
        if canon.lower() == key:
            return canon
    return "equal"


def map_gmail_fields(value: Any) -> Any:
    """$json.subject / $json["subject"] -> $json["headers"]["subject"] for Gmail-sourced data."""
    if not isinstance(value, str):
        return value
    return _GMAIL_FIELD_RE.sub(lambda m: '$json["headers"]["%s"]' % (m.group(1) or m.group(2)), value)


def is_placeholder(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() in CONDITION_PLACEHOLDERS)


def repair_conditions(conditions: List[Dict[str, Any]], node_name: str, upstream: Optional[Dict[str, Any]],
                      workflow_name: str = "") -> List[Dict[str, Any]]:
    """
    Return a repaired condition list: every entry has leftValue/rightValue/operation,
    placeholder operands are replaced with an inferred condition, and an empty list
    gets a single inferred condition.
    """
    gmail = source_context(upstream) == "gmail"
    out: List[Dict[str, Any]] = []
    for cond in conditions:
        left = cond.get("leftValue", cond.get("value1"))
        right = cond.get("rightValue", cond.get("value2", ""))
        if is_placeholder(left):
            out.append(infer_condition(node_name, upstream, workflow_name))
            continue
        if gmail:
            left = map_gmail_fields(left)
        op = cond.get("operation")
        if op is None and isinstance(cond.get("operator"), dict):
            op = cond["operator"].get("operation")
        out.append({
            "leftValue": left,
            "rightValue": "" if right is None else right,
            "operation": normalize_operation(op),
        })
    if not out:
        out.append(infer_condition(node_name, upstream, workflow_name))
    return out

# flowmend/structural/advice.py
"""
Node-level advisory notes. These are surfaced to callers only and never written
into a document: anything written there would be stripped on the next fix pass.
"""
import re
from typing import Any, Dict, List

from flowmend.model.taxonomy import NodeFamily, family_of

_LITERAL_RETURN_RE = re.compile(r"return\s*\[\s*\{\s*json\s*:\s*\{[^$]*\}\s*\}\s*\]\s*;?\s*$", re.S)
_LABEL_WORDS = ("label", "labelled", "labeled", "tagged")


def _condition_count(params: Dict[str, Any]) -> int:
    conds = params.get("conditions")
    if isinstance(conds, list):
        return len(conds)
    if isinstance(conds, dict):
        return sum(len(v) for k, v in conds.items() if isinstance(v, list))
    return 0


def node_advice(node: Dict[str, Any]) -> List[str]:
    name = str(node.get("name", ""))
    params = node.get("parameters") if isinstance(node.get("parameters"), dict) else {}
    family = family_of(node.get("type"))
    out: List[str] = []

    if family == NodeFamily.CONDITIONAL:
        if _condition_count(params) == 1:
            out.append(f'Node "{name}": a single-condition IF could be a Switch node if more branches are planned')
        if any(w in name.lower() for w in _LABEL_WORDS):
            out.append(f'Node "{name}": label checks on email data are easier in a Code node over labelIds')
    elif family == NodeFamily.EMAIL_SEND and "email" not in name.lower() and "mail" not in name.lower():
        out.append(f'Node "{name}": Send Email used for something that is not an email; a Set node may fit better')
    elif family == NodeFamily.FUNCTION:
        code = params.get("functionCode")
        if isinstance(code, str) and _LITERAL_RETURN_RE.search(code.strip()):
            out.append(f'Node "{name}": function only returns a literal; use a Set node instead')
    elif family == NodeFamily.NOOP:
        out.append(f'Node "{name}": No Operation node does nothing and can be removed')

    if "webhookId" in node:
        out.append(f'Node "{name}": webhookId is assigned by n8n on import and should not be set')
    return out


def workflow_advice(workflow: Dict[str, Any]) -> List[str]:
    out: List[str] = []
    for n in workflow.get("nodes") or []:
        if isinstance(n, dict):
            out.extend(node_advice(n))
    return out

# flowmend/conformance/classifier.py
"""
Classify raw engine error strings into (kind, fix strategy, captures).

The table is ordered data: the first matching pattern wins, and new
signatures are added with ErrorClassifier.register() without touching
the repair loop.
"""
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern

from flowmend.model.results import ErrorClassification, ErrorKind, FixStrategy
from flowmend.utils.logger import get_logger

log = get_logger("classifier")


@dataclass(frozen=True)
class ErrorPattern:
    pattern: Pattern
    kind: ErrorKind
    strategy: FixStrategy
    hint: str


def _p(regex: str, kind: ErrorKind, strategy: FixStrategy, hint: str) -> ErrorPattern:
    return ErrorPattern(re.compile(regex, re.IGNORECASE), kind, strategy, hint)


K, S = ErrorKind, FixStrategy

DEFAULT_PATTERNS: List[ErrorPattern] = [
    _p(r'Unknown node "([^"]+)"', K.UNKNOWN_NODE, S.FIX_NODE_TYPE,
       "Check node type casing and naming"),
    _p(r'Invalid parameter "([^"]+)" for node "([^"]+)"', K.INVALID_PARAMETER, S.FIX_PARAMETERS,
       "Remove parameters the node does not support"),
    _p(r'Missing required parameter "([^"]+)" for node "([^"]+)"', K.MISSING_PARAMETER, S.ADD_MISSING_PARAMETERS,
       "Add all required parameters for the node"),
    _p(r'Node "([^"]+)" references non-existent node "([^"]+)"', K.INVALID_CONNECTION, S.FIX_CONNECTIONS,
       "Make sure every connection points to an existing node name"),
    _p(r"Invalid credential", K.CREDENTIAL_ERROR, S.FIX_CREDENTIALS,
       "Credentials must be configured in n8n; do not embed them"),
    _p(r"JSON parse error", K.JSON_PARSE_ERROR, S.FIX_JSON_STRUCTURE,
       "Return valid JSON only"),
    _p(r'Node type "([^"]+)" is not known', K.NODE_NOT_FOUND, S.FIX_NODE_TYPE,
       "Use node types from n8n-nodes-base"),
    _p(r'Unrecognized node type:? "?([\w.@/-]+)"?', K.NODE_NOT_FOUND, S.FIX_NODE_TYPE,
       "Use node types from n8n-nodes-base"),
    _p(r'Duplicate node name:? "([^"]+)"', K.DUPLICATE_NODE_NAME, S.FIX_DUPLICATE_NAMES,
       "Every node needs a unique name"),
    _p(r'Invalid expression in "([^"]+)"', K.INVALID_EXPRESSION, S.FIX_EXPRESSIONS,
       'Use ={{ $json["field"] }} expression syntax'),
    _p(r'Node "([^"]+)" doesn\'t exist', K.MISSING_NODE_REFERENCE, S.FIX_MISSING_REFERENCES,
       "Expressions may only reference existing nodes"),
    _p(r'Credentials "([^"]+)" not found', K.INVALID_CREDENTIALS_REFERENCE, S.FIX_CREDENTIAL_REFERENCES,
       "Reference credentials that exist or leave them unset"),
    _p(r"Circular reference detected", K.CIRCULAR_REFERENCE, S.FIX_CIRCULAR_REFERENCES,
       "Remove connection loops"),
    _p(r"Invalid HTTP method", K.INVALID_WEBHOOK_METHOD, S.FIX_WEBHOOK_METHOD,
       "Webhook httpMethod must be GET, POST, PUT, PATCH, DELETE or HEAD"),
    # n8n public API request validation
    _p(r"must NOT have additional properties", K.SCHEMA_VIOLATION, S.FIX_JSON_STRUCTURE,
       "Remove fields that are not part of the workflow format"),
    _p(r"must have required property '([^']+)'", K.SCHEMA_VIOLATION, S.FIX_JSON_STRUCTURE,
       "Include name, nodes, connections and settings"),
]

# Regeneration guidance per kind, embedded in the regeneration prompt.
FIX_INSTRUCTIONS: Dict[ErrorKind, str] = {
    K.UNKNOWN_NODE: "Use exact n8n node types such as n8n-nodes-base.gmailTrigger, n8n-nodes-base.slack, "
                    "n8n-nodes-base.httpRequest. Type names are case-sensitive.",
    K.NODE_NOT_FOUND: "Only use node types that exist in n8n-nodes-base.",
    K.INVALID_PARAMETER: "Only use parameters that the node type supports; remove anything else.",
    K.MISSING_PARAMETER: "Add every required parameter for each node.",
    K.INVALID_CONNECTION: "Connections are keyed by node name and must only reference nodes that exist.",
    K.CREDENTIAL_ERROR: "Do not include credential objects; they are connected in n8n after import.",
    K.JSON_PARSE_ERROR: "Return a single valid JSON object with name, nodes, connections and settings.",
    K.DUPLICATE_NODE_NAME: "Give every node a unique name.",
    K.INVALID_EXPRESSION: 'Write expressions as ={{ $json["field"] }}.',
    K.MISSING_NODE_REFERENCE: "Expressions may only reference nodes that exist in the workflow.",
    K.INVALID_CREDENTIALS_REFERENCE: "Remove credential references that do not exist.",
    K.CIRCULAR_REFERENCE: "The workflow must not contain connection loops.",
    K.INVALID_WEBHOOK_METHOD: "Webhook httpMethod must be an upper-case HTTP method.",
    K.SCHEMA_VIOLATION: "Only include standard workflow fields; no metadata or extra keys.",
    K.UNKNOWN_ERROR: "Review the whole workflow for structural problems and return valid n8n JSON.",
}

UNKNOWN_HINT = "Unrecognized error; the workflow will be regenerated"


class ErrorClassifier:
    def __init__(self, patterns: Optional[List[ErrorPattern]] = None):
        self.patterns: List[ErrorPattern] = list(patterns if patterns is not None else DEFAULT_PATTERNS)

    def register(self, regex: str, kind: ErrorKind, strategy: FixStrategy, hint: str = "",
                 first: bool = False) -> None:
        """Add a pattern at the end of the table (or the front, with first=True)."""
        entry = _p(regex, kind, strategy, hint)
        if first:
            self.patterns.insert(0, entry)
        else:
            self.patterns.append(entry)

    def classify(self, raw_error: Optional[str]) -> ErrorClassification:
        text = raw_error or ""
        for entry in self.patterns:
            m = entry.pattern.search(text)
            if m:
                captures = [g for g in m.groups() if g is not None]
                log.info("classified error as %s -> %s", entry.kind.value, entry.strategy.value)
                return ErrorClassification(entry.kind, entry.strategy, captures, entry.hint, text)
        log.info("unclassified error, deferring to regeneration: %.120s", text)
        return ErrorClassification(K.UNKNOWN_ERROR, S.REGENERATE, [], UNKNOWN_HINT, text)


def fix_instructions(kind: ErrorKind) -> str:
    return FIX_INSTRUCTIONS.get(kind, FIX_INSTRUCTIONS[K.UNKNOWN_ERROR])


_default = ErrorClassifier()


def classify(raw_error: Optional[str]) -> ErrorClassification:
    return _default.classify(raw_error)

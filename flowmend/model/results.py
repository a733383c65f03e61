# flowmend/model/results.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Severity(str, Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"


class ErrorKind(str, Enum):
    UNKNOWN_NODE = "unknown_node"
    INVALID_PARAMETER = "invalid_parameter"
    MISSING_PARAMETER = "missing_parameter"
    INVALID_CONNECTION = "invalid_connection"
    CREDENTIAL_ERROR = "credential_error"
    JSON_PARSE_ERROR = "json_parse_error"
    NODE_NOT_FOUND = "node_not_found"
    DUPLICATE_NODE_NAME = "duplicate_node_name"
    INVALID_EXPRESSION = "invalid_expression"
    MISSING_NODE_REFERENCE = "missing_node_reference"
    INVALID_CREDENTIALS_REFERENCE = "invalid_credentials_reference"
    CIRCULAR_REFERENCE = "circular_reference"
    INVALID_WEBHOOK_METHOD = "invalid_webhook_method"
    SCHEMA_VIOLATION = "schema_violation"
    UNKNOWN_ERROR = "unknown_error"
    # Loop-level history markers, never produced by the classifier table.
    VALIDATION_ERROR = "validation_error"
    TIMEOUT = "timeout"


class FixStrategy(str, Enum):
    FIX_NODE_TYPE = "fix_node_type"
    FIX_PARAMETERS = "fix_parameters"
    ADD_MISSING_PARAMETERS = "add_missing_parameters"
    FIX_CONNECTIONS = "fix_connections"
    FIX_CREDENTIALS = "fix_credentials"
    FIX_JSON_STRUCTURE = "fix_json_structure"
    FIX_DUPLICATE_NAMES = "fix_duplicate_names"
    FIX_EXPRESSIONS = "fix_expressions"
    FIX_MISSING_REFERENCES = "fix_missing_references"
    FIX_CREDENTIAL_REFERENCES = "fix_credential_references"
    FIX_CIRCULAR_REFERENCES = "fix_circular_references"
    FIX_WEBHOOK_METHOD = "fix_webhook_method"
    REGENERATE = "regenerate"


@dataclass(frozen=True)
class ValidationIssue:
    kind: str
    message: str
    location: Optional[str] = None
    severity: Severity = Severity.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "location": self.location,
            "severity": self.severity.value,
        }


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: List[ValidationIssue]
    warnings: List[ValidationIssue]
    suggestions: List[str]
    score: int
    complexity: Optional[int] = None

    def kinds(self) -> List[str]:
        return [i.kind for i in self.errors + self.warnings]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "suggestions": list(self.suggestions),
            "score": self.score,
            "complexity": self.complexity,
        }


@dataclass(frozen=True)
class ErrorClassification:
    kind: ErrorKind
    fix_strategy: FixStrategy
    captures: List[str] = field(default_factory=list)
    hint: str = ""
    raw: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "fixStrategy": self.fix_strategy.value,
            "captures": list(self.captures),
            "hint": self.hint,
        }


@dataclass(frozen=True)
class TestResult:
    __test__ = False  # not a pytest class

    success: bool
    error: Optional[str] = None
    details: Any = None
    skipped: bool = False
    note: Optional[str] = None


@dataclass
class FixResult:
    workflow: Dict[str, Any]
    suggestions: List[str] = field(default_factory=list)
    changes: List[str] = field(default_factory=list)


@dataclass
class AttemptRecord:
    attempt: int
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None
    fix_strategy: Optional[str] = None
    hint: Optional[str] = None
    regenerated: bool = False
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt": self.attempt,
            "success": self.success,
            "error": self.error,
            "errorType": self.error_type,
            "fixStrategy": self.fix_strategy,
            "hint": self.hint,
            "regenerated": self.regenerated,
            "timestamp": self.timestamp,
        }


@dataclass
class RepairOutcome:
    success: bool
    workflow: Any
    attempts: int
    history: List[AttemptRecord]
    validated: bool
    last_error: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    cached: bool = False
    timed_out: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "workflow": self.workflow,
            "attempts": self.attempts,
            "history": [h.to_dict() for h in self.history],
            "validated": self.validated,
            "lastError": self.last_error,
            "suggestions": list(self.suggestions),
            "notes": list(self.notes),
            "cached": self.cached,
            "timedOut": self.timed_out,
        }


@dataclass(frozen=True)
class CacheEntry:
    key: str
    result: Optional[RepairOutcome]
    created_at: float

# flowmend/model/schema.py
"""
Minimal importable-document schema plus the allow-lists the fixer strips toward.
"""

# ---------- Allow-lists ----------

ENVELOPE_KEYS = frozenset({
    "name", "nodes", "connections", "settings", "meta", "versionId", "pinData",
    "staticData", "tags", "active", "id", "triggerCount", "createdAt", "updatedAt",
})

REQUIRED_ENVELOPE_KEYS = ("name", "nodes", "connections")

NODE_KEYS = frozenset({
    "id", "name", "type", "typeVersion", "position", "parameters", "credentials",
    "disabled", "notes", "notesInFlow", "continueOnFail", "onError", "retryOnFail",
    "maxTries", "waitBetweenTries", "alwaysOutputData", "executeOnce",
})

HOP_KEYS = frozenset({"node", "type", "index"})

SETTINGS_KEYS = frozenset({
    "executionOrder", "saveManualExecutions", "saveDataErrorExecution",
    "saveDataSuccessExecution", "saveExecutionProgress", "callerPolicy", "callerIds",
    "errorWorkflow", "timezone", "executionTimeout",
})

META_KEYS = frozenset({"instanceId", "templateId", "templateCredsSetupCompleted"})

# Envelope fields whose content is engine-owned and passed through untouched
# (apart from reserved-marker stripping).
OPAQUE_ENVELOPE_KEYS = frozenset({"pinData", "staticData", "tags"})

# Keys that only ever appear as generation byproducts.
GENERATION_KEYS = frozenset({"metadata", "instructions", "validation"})

RESERVED_PREFIX = "_"

# The one deliberate asymmetry: resource-locator objects ({"__rl": true, "value": ..., "mode": ...})
# look like reserved metadata but are required by file-storage/spreadsheet families.
EXCEPTION_KEYS = frozenset({"__rl"})

CONNECTION_OUTPUT_RE = r"^(main|ai_[A-Za-z]+)$"


def is_reserved_key(key: str) -> bool:
    """True for keys that must never survive into a fixed document."""
    if key in EXCEPTION_KEYS:
        return False
    return key.startswith(RESERVED_PREFIX) or key in GENERATION_KEYS


# ---------- JSON Schema (Draft 7) ----------

WORKFLOW_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": list(REQUIRED_ENVELOPE_KEYS),
    "properties": {
        "name": {"type": "string"},
        "nodes": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["id", "name", "type"],
                "properties": {
                    "id": {"type": ["string", "number"]},
                    "name": {"type": "string", "minLength": 1},
                    "type": {"type": "string", "minLength": 1},
                    "typeVersion": {"type": "number"},
                    "parameters": {"type": "object"},
                    "credentials": {"type": "object"},
                },
            },
        },
        "connections": {
            "type": "object",
            "additionalProperties": {"type": "object"},
        },
        "settings": {"type": "object"},
    },
}

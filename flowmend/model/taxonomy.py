# flowmend/model/taxonomy.py
"""
Node-family taxonomy for n8n workflow documents.

Every known type tag maps to a NodeSpec: its family (which decides the
parameter shape the fixer canonicalizes toward), the typeVersion it is
emitted with, and whether it is a trigger or calls a third-party service.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

BASE_PREFIX = "n8n-nodes-base."

# Community / scoped packages are accepted as-is.
KNOWN_TYPE_RE = re.compile(r"^(n8n-nodes-base\.[A-Za-z0-9]+|@[^/]+/n8n-nodes-[A-Za-z0-9_.-]+)$")


class NodeFamily(str, Enum):
    EMAIL_TRIGGER = "email_trigger"
    SCHEDULE_TRIGGER = "schedule_trigger"
    WEBHOOK_TRIGGER = "webhook_trigger"
    FILE_TRIGGER = "file_trigger"
    MANUAL_TRIGGER = "manual_trigger"
    APP_TRIGGER = "app_trigger"
    CONDITIONAL = "conditional"
    SWITCH = "switch"
    MERGE = "merge"
    LOOP = "loop"
    SET = "set"
    CODE = "code"
    FUNCTION = "function"
    HTTP_CALL = "http_call"
    EMAIL = "email"
    EMAIL_SEND = "email_send"
    MESSAGING = "messaging"
    SPREADSHEET = "spreadsheet"
    FILE_STORAGE = "file_storage"
    DATABASE = "database"
    AI_COMPLETION = "ai_completion"
    RESPONSE = "response"
    WAIT = "wait"
    NOOP = "noop"
    APP = "app"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NodeSpec:
    type: str
    family: NodeFamily
    version: float = 1
    exact_version: bool = False
    trigger: bool = False
    credential: Optional[str] = None


def _spec(short: str, family: NodeFamily, version: float = 1, **kw) -> NodeSpec:
    return NodeSpec(type=BASE_PREFIX + short, family=family, version=version, **kw)


_F = NodeFamily
_SPECS = [
    _spec("gmailTrigger", _F.EMAIL_TRIGGER, 1, trigger=True, credential="gmailOAuth2"),
    _spec("emailReadImap", _F.EMAIL_TRIGGER, 2, trigger=True, credential="imap"),
    _spec("scheduleTrigger", _F.SCHEDULE_TRIGGER, 1.1, trigger=True),
    _spec("cron", _F.SCHEDULE_TRIGGER, 1, trigger=True),
    _spec("interval", _F.SCHEDULE_TRIGGER, 1, trigger=True),
    _spec("webhook", _F.WEBHOOK_TRIGGER, 1, trigger=True),
    _spec("formTrigger", _F.WEBHOOK_TRIGGER, 2, trigger=True),
    _spec("googleDriveTrigger", _F.FILE_TRIGGER, 1, trigger=True, credential="googleDriveOAuth2Api"),
    _spec("manualTrigger", _F.MANUAL_TRIGGER, 1, trigger=True),
    _spec("start", _F.MANUAL_TRIGGER, 1, trigger=True),
    _spec("errorTrigger", _F.APP_TRIGGER, 1, trigger=True),
    _spec("typeformTrigger", _F.APP_TRIGGER, 1, trigger=True, credential="typeformApi"),
    _spec("if", _F.CONDITIONAL, 1),
    _spec("switch", _F.SWITCH, 1),
    _spec("merge", _F.MERGE, 2),
    _spec("splitInBatches", _F.LOOP, 3),
    _spec("set", _F.SET, 1, exact_version=True),
    _spec("code", _F.CODE, 2),
    _spec("function", _F.FUNCTION, 1),
    _spec("functionItem", _F.FUNCTION, 1),
    _spec("httpRequest", _F.HTTP_CALL, 4.1),
    _spec("gmail", _F.EMAIL, 2, credential="gmailOAuth2"),
    _spec("emailSend", _F.EMAIL_SEND, 2, credential="smtp"),
    _spec("slack", _F.MESSAGING, 2.2, credential="slackApi"),
    _spec("telegram", _F.MESSAGING, 1.2, credential="telegramApi"),
    _spec("discord", _F.MESSAGING, 2, credential="discordWebhookApi"),
    _spec("googleSheets", _F.SPREADSHEET, 4.5, credential="googleSheetsOAuth2Api"),
    _spec("airtable", _F.SPREADSHEET, 2, credential="airtableTokenApi"),
    _spec("googleDrive", _F.FILE_STORAGE, 3, credential="googleDriveOAuth2Api"),
    _spec("dropbox", _F.FILE_STORAGE, 1, credential="dropboxOAuth2Api"),
    _spec("postgres", _F.DATABASE, 2.5, credential="postgres"),
    _spec("mySql", _F.DATABASE, 2.4, credential="mySql"),
    _spec("openAi", _F.AI_COMPLETION, 1.1, credential="openAiApi"),
    _spec("respondToWebhook", _F.RESPONSE, 1.1),
    _spec("wait", _F.WAIT, 1.1),
    _spec("noOp", _F.NOOP, 1),
    _spec("notion", _F.APP, 2.2, credential="notionApi"),
    _spec("hubspot", _F.APP, 2, credential="hubspotApi"),
    _spec("googleCalendar", _F.APP, 1.2, credential="googleCalendarOAuth2Api"),
]

NODE_SPECS: Dict[str, NodeSpec] = {s.type: s for s in _SPECS}

# lower-cased type tag -> canonical type tag
_CANONICAL_BY_LOWER: Dict[str, str] = {t.lower(): t for t in NODE_SPECS}

# Historical spellings seen in generated documents.
TYPE_ALIASES: Dict[str, str] = {
    "gmailtrigger": "gmailTrigger",
    "gmail trigger": "gmailTrigger",
    "slackmessage": "slack",
    "slack message": "slack",
    "httpwebrequest": "httpRequest",
    "http request": "httpRequest",
    "googlesheets": "googleSheets",
    "google sheets": "googleSheets",
    "webhooktrigger": "webhook",
    "webhook trigger": "webhook",
    "setdata": "set",
    "set data": "set",
    "ifelse": "if",
    "if else": "if",
    "splitinbatches": "splitInBatches",
    "split in batches": "splitInBatches",
    "schedule": "scheduleTrigger",
    "cronjob": "cron",
    "email": "emailSend",
    "sendemail": "emailSend",
    "send email": "emailSend",
    "googledrive": "googleDrive",
    "google drive": "googleDrive",
    "respond to webhook": "respondToWebhook",
    "openai": "openAi",
    "no operation": "noOp",
    "noop": "noOp",
}

# (substring tuple, short type); first hit wins.
_HEURISTICS = [
    (("gmail", "trigger"), "gmailTrigger"),
    (("drive", "trigger"), "googleDriveTrigger"),
    (("schedule",), "scheduleTrigger"),
    (("slack",), "slack"),
    (("http",), "httpRequest"),
    (("sheet",), "googleSheets"),
    (("webhook", "respond"), "respondToWebhook"),
    (("webhook",), "webhook"),
    (("split",), "splitInBatches"),
]

CONDITION_OPERATIONS = (
    "equal", "notEqual", "contains", "notContains", "startsWith", "notStartsWith",
    "endsWith", "notEndsWith", "regex", "notRegex", "larger", "largerEqual",
    "smaller", "smallerEqual", "exists", "notExists", "isEmpty", "isNotEmpty",
)

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")


def _strip_prefix(raw: str) -> str:
    lower = raw.strip().lower()
    for prefix in ("n8n-nodes-base.", "n8n-nodes-base:", "nodes-base."):
        if lower.startswith(prefix):
            return raw.strip()[len(prefix):]
    return raw.strip()


def canonical_type(raw: Any) -> Optional[str]:
    """
    Resolve a type tag to its canonical spelling. Exact, case-insensitive and alias
    lookups only; returns None when the tag is unresolvable.
    """
    if not isinstance(raw, str) or not raw.strip():
        return None
    if raw in NODE_SPECS or raw.startswith("@"):
        return raw
    hit = _CANONICAL_BY_LOWER.get(raw.strip().lower())
    if hit:
        return hit
    short = _strip_prefix(raw)
    hit = _CANONICAL_BY_LOWER.get((BASE_PREFIX + short).lower())
    if hit:
        return hit
    alias = TYPE_ALIASES.get(short.lower())
    if alias:
        return BASE_PREFIX + alias
    return None


def guess_type(raw: str) -> str:
    """
    Best-effort resolution used by targeted repair: canonical lookup, then substring
    heuristics, finally the bare name under the base package prefix.
    """
    hit = canonical_type(raw)
    if hit:
        return hit
    short = _strip_prefix(raw or "")
    lower = short.lower()
    for needles, target in _HEURISTICS:
        if all(n in lower for n in needles):
            return BASE_PREFIX + target
    compact = re.sub(r"[^A-Za-z0-9]", "", short)
    return BASE_PREFIX + (compact[:1].lower() + compact[1:] if compact else "noOp")


def spec_for(type_tag: Any) -> Optional[NodeSpec]:
    if not isinstance(type_tag, str):
        return None
    return NODE_SPECS.get(type_tag) or NODE_SPECS.get(canonical_type(type_tag) or "")


def family_of(type_tag: Any) -> NodeFamily:
    spec = spec_for(type_tag)
    return spec.family if spec else NodeFamily.UNKNOWN


def is_known_type(type_tag: Any) -> bool:
    return isinstance(type_tag, str) and (type_tag in NODE_SPECS or bool(KNOWN_TYPE_RE.match(type_tag)))


def is_trigger(type_tag: Any) -> bool:
    spec = spec_for(type_tag)
    if spec:
        return spec.trigger
    return isinstance(type_tag, str) and type_tag.lower().endswith("trigger")


# Families whose presence makes a document non-trivial for the repair fast path.
BRANCHING_FAMILIES = frozenset({NodeFamily.CONDITIONAL, NodeFamily.SWITCH, NodeFamily.MERGE, NodeFamily.LOOP})
CODE_FAMILIES = frozenset({NodeFamily.CODE, NodeFamily.FUNCTION})

# Condition operands that are generation placeholders rather than real data.
CONDITION_PLACEHOLDERS = frozenset({"", "value", "value1", "value2", "field", "condition", "={{ $json.field }}"})

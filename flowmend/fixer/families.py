# flowmend/fixer/families.py
"""
Per-family parameter canonicalizers.

Each canonicalizer receives the node (raw dict, type already normalized) and
its parameters, and rewrites them toward the shape n8n accepts on import.
Canonicalizers must be idempotent: running one on its own output is a no-op.

Defaults that a family needs even when empty (options objects and the like)
are NOT set here; inject_defaults() adds them after the allow-list strip.
"""
import re
from typing import Any, Callable, Dict, List

from flowmend.fixer.conditions import repair_conditions
from flowmend.fixer.context import FixContext
from flowmend.model.taxonomy import BASE_PREFIX, HTTP_METHODS

Canonicalizer = Callable[[Dict[str, Any], Dict[str, Any], FixContext], None]

_CANONICALIZERS: Dict[str, Canonicalizer] = {}
_DEFAULTS: Dict[str, Dict[str, Any]] = {}


def canonicalizer(*short_types: str):
    """Register a canonicalizer for one or more node types (without the base prefix)."""
    def deco(fn: Canonicalizer) -> Canonicalizer:
        for t in short_types:
            _CANONICALIZERS[BASE_PREFIX + t] = fn
        return fn
    return deco


def required_default(short_type: str, key: str, value: Any) -> None:
    _DEFAULTS.setdefault(BASE_PREFIX + short_type, {})[key] = value


# ---------- Shared helpers ----------

_TRUE_FALSE = {"true": True, "false": False}


def _coerce_bools(params: Dict[str, Any], keys) -> None:
    for k in keys:
        v = params.get(k)
        if isinstance(v, str) and v.strip().lower() in _TRUE_FALSE:
            params[k] = _TRUE_FALSE[v.strip().lower()]


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _locator_value(value: Any) -> Any:
    """Collapse a resource-locator / {value: ...} object to its plain value."""
    if isinstance(value, dict):
        for key in ("value", "id", "url"):
            if key in value and not isinstance(value[key], dict):
                return value[key]
    return value


def _rename(params: Dict[str, Any], old: str, new: str, ctx: FixContext, node_name: str) -> None:
    if old in params and new not in params:
        params[new] = params.pop(old)
        ctx.change(f'{node_name}: renamed parameter "{old}" to "{new}"')
    elif old in params:
        params.pop(old)
        ctx.change(f'{node_name}: dropped duplicate parameter "{old}"')


def _drop(params: Dict[str, Any], key: str, ctx: FixContext, node_name: str) -> None:
    if key in params:
        params.pop(key)
        ctx.change(f'{node_name}: removed parameter "{key}"')


def _poll_times(params: Dict[str, Any]) -> None:
    pt = params.get("pollTimes")
    if not isinstance(pt, dict) or not isinstance(pt.get("item"), list) or not pt["item"]:
        item = pt.get("item") if isinstance(pt, dict) else None
        params["pollTimes"] = {"item": [item] if isinstance(item, dict) else [{"mode": "everyMinute"}]}


# ---------- Triggers ----------

@canonicalizer("gmailTrigger")
def _gmail_trigger(node, params, ctx):
    name = node["name"]
    options = params.get("options")
    if isinstance(options, dict):
        for key in ("labelIds", "label"):
            if key in options and "labelIds" not in params:
                params["labelIds"] = options.pop(key)
                ctx.change(f"{name}: moved labelIds out of options")
        if not options:
            params.pop("options")
    _rename(params, "label", "labelIds", ctx, name)
    _rename(params, "labels", "labelIds", ctx, name)
    labels = [str(x) for x in _as_list(params.get("labelIds")) if x not in (None, "")]
    params["labelIds"] = labels or ["INBOX"]
    _drop(params, "scope", ctx, name)
    _coerce_bools(params, ("simple", "includeSpamTrash", "downloadAttachments"))
    _poll_times(params)


@canonicalizer("scheduleTrigger")
def _schedule_trigger(node, params, ctx):
    cron = params.pop("cronExpression", None)
    rule = params.get("rule")
    if not isinstance(rule, dict):
        rule = {}
    interval = rule.get("interval")
    if isinstance(interval, dict):
        interval = [interval]
    if not isinstance(interval, list) or not interval:
        interval = [{"field": "cronExpression", "expression": cron}] if cron else [{"field": "hours"}]
        ctx.change(f'{node["name"]}: rebuilt schedule rule')
    rule["interval"] = [i for i in interval if isinstance(i, dict)] or [{"field": "hours"}]
    params["rule"] = rule


@canonicalizer("cron")
def _cron(node, params, ctx):
    if "cronTimes" in params and "triggerTimes" not in params:
        params["triggerTimes"] = params.pop("cronTimes")
    tt = params.get("triggerTimes")
    items = tt.get("item") if isinstance(tt, dict) else tt
    items = [i for i in _as_list(items) if isinstance(i, dict)]
    for item in items:
        if "mode" not in item:
            if "cronExpression" in item:
                item["mode"] = "custom"
            elif "hour" in item:
                item["mode"] = "everyDay"
            else:
                item["mode"] = "everyHour"
    params["triggerTimes"] = {"item": items or [{"mode": "everyHour"}]}


@canonicalizer("googleDriveTrigger")
def _drive_trigger(node, params, ctx):
    params.setdefault("event", "fileCreated")
    for key in ("folderId", "folderToWatch"):
        if key in params:
            params[key] = _locator_value(params[key])
    _poll_times(params)


WEBHOOK_OPTION_KEYS = frozenset({"rawBody", "responseHeaders"})


@canonicalizer("webhook")
def _webhook(node, params, ctx):
    name = node["name"]
    method = params.get("httpMethod")
    method = method.strip().upper() if isinstance(method, str) else "POST"
    if method not in HTTP_METHODS:
        ctx.change(f'{name}: invalid webhook method "{method}" replaced with POST')
        method = "POST"
    params["httpMethod"] = method

    path = params.get("path")
    if not isinstance(path, str) or not path.strip():
        path = name.lower()
    path = re.sub(r"\s+", "-", path.strip()).strip("/")
    params["path"] = path or "webhook"
    params.setdefault("responseMode", "onReceived")

    options = params.get("options")
    if isinstance(options, dict):
        bad = [k for k in options if k not in WEBHOOK_OPTION_KEYS]
        for k in bad:
            options.pop(k)
            ctx.change(f'{name}: removed unsupported webhook option "{k}"')
    elif options is not None:
        params.pop("options")


# ---------- Flow control ----------

@canonicalizer("if")
def _if(node, params, ctx):
    name = node["name"]
    conds = params.get("conditions")
    flat: List[Dict[str, Any]] = []
    if isinstance(conds, list):
        flat = [c for c in conds if isinstance(c, dict)]
        ctx.change(f"{name}: wrapped condition list")
    elif isinstance(conds, dict):
        if isinstance(conds.get("conditions"), list):
            flat = [c for c in conds["conditions"] if isinstance(c, dict)]
        for legacy in ("string", "number", "boolean", "dateTime"):
            if isinstance(conds.get(legacy), list):
                flat.extend(c for c in conds[legacy] if isinstance(c, dict))
                ctx.change(f'{name}: converted "{legacy}" conditions')

    repaired = repair_conditions(flat, name, ctx.upstream_of(name), ctx.workflow_name)
    params["conditions"] = {"conditions": repaired}

    combinator = params.pop("combinator", None)
    if isinstance(conds, dict) and "combinator" in conds:
        combinator = conds.get("combinator")
    if "combineOperation" not in params:
        params["combineOperation"] = "any" if str(combinator).lower() == "or" else "all"


# ---------- Transform ----------

@canonicalizer("set")
def _set(node, params, ctx):
    _drop(params, "options", ctx, node["name"])
    _coerce_bools(params, ("keepOnlySet",))
    values = params.get("values")
    if isinstance(values, list):
        params["values"] = {"string": [v for v in values if isinstance(v, dict)]}
        ctx.change(f'{node["name"]}: wrapped values list')
    elif not isinstance(values, dict):
        params["values"] = {"string": []}


@canonicalizer("code")
def _code(node, params, ctx):
    if "functionCode" in params:
        legacy = params.pop("functionCode")
        if "jsCode" not in params:
            params["jsCode"] = legacy
            ctx.change(f'{node["name"]}: migrated functionCode to jsCode')
    if not isinstance(params.get("jsCode"), str) and not isinstance(params.get("pythonCode"), str):
        params["jsCode"] = "return $input.all();"


@canonicalizer("function", "functionItem")
def _function(node, params, ctx):
    if "jsCode" in params:
        code = params.pop("jsCode")
        if "functionCode" not in params:
            params["functionCode"] = code
            ctx.change(f'{node["name"]}: migrated jsCode to functionCode')
    if not isinstance(params.get("functionCode"), str):
        params["functionCode"] = "return item;" if node["type"].endswith("functionItem") else "return items;"


# ---------- HTTP / response ----------

@canonicalizer("httpRequest")
def _http(node, params, ctx):
    _rename(params, "requestMethod", "method", ctx, node["name"])
    method = params.get("method")
    if isinstance(method, str) and method.strip().upper() in HTTP_METHODS:
        params["method"] = method.strip().upper()
    else:
        params["method"] = "GET"

    auth = params.get("authentication")
    if isinstance(auth, dict):
        params["authentication"] = str(auth.get("type") or auth.get("value") or "none")
        ctx.change(f'{node["name"]}: collapsed authentication object')
    _coerce_bools(params, ("sendBody", "sendHeaders", "sendQuery"))

    for ui in ("headerParametersUi", "queryParametersUi", "bodyParametersUi"):
        block = params.get(ui)
        if isinstance(block, dict) and "parameter" in block and not isinstance(block["parameter"], list):
            block["parameter"] = _as_list(block["parameter"])


@canonicalizer("respondToWebhook")
def _respond(node, params, ctx):
    options = params.get("options")
    if isinstance(options, dict) and "responseCode" in options:
        code = options.pop("responseCode")
        params.setdefault("responseCode", code)
        ctx.change(f'{node["name"]}: moved responseCode out of options')
    code = params.get("responseCode")
    if isinstance(code, str) and code.strip().isdigit():
        params["responseCode"] = int(code.strip())


@canonicalizer("wait")
def _wait(node, params, ctx):
    amount = params.get("amount")
    if isinstance(amount, str):
        try:
            num = float(amount.strip())
        except ValueError:
            return
        params["amount"] = int(num) if num.is_integer() else num


# ---------- Email ----------

def _address(value: Any) -> Any:
    if isinstance(value, dict):
        return str(value.get("email") or value.get("value") or value.get("address") or "")
    if isinstance(value, list):
        return ", ".join(str(_address(v)) for v in value)
    return value


@canonicalizer("emailSend")
def _email_send(node, params, ctx):
    name = node["name"]
    _rename(params, "to", "toEmail", ctx, name)
    _rename(params, "from", "fromEmail", ctx, name)
    for body_key in ("body", "message"):
        _rename(params, body_key, "text", ctx, name)
    params.setdefault("fromEmail", "noreply@example.com")
    for key in ("toEmail", "fromEmail", "ccEmail", "bccEmail"):
        if key in params and not isinstance(params[key], str):
            params[key] = _address(params[key])
    att = params.get("attachments")
    if att is not None and not (isinstance(att, dict) and isinstance(att.get("attachment"), list)):
        inner = att.get("attachment") if isinstance(att, dict) else att
        params["attachments"] = {"attachment": _as_list(inner)}


# ---------- Messaging ----------

_SLACK_ID_RE = re.compile(r"^[CGD][A-Z0-9]{6,}$")


def slack_channel(value: Any) -> str:
    """Canonical Slack addressing: "#channel" or "@user"."""
    raw = str(_locator_value(value) or "").strip()
    if raw.startswith("=") or raw.startswith("@"):
        return raw
    if not raw or _SLACK_ID_RE.match(raw):
        return "#general"
    slug = re.sub(r"[^\w.\-]", "", re.sub(r"\s+", "-", raw.lstrip("#").lower()))
    return "#" + (slug or "general")


@canonicalizer("slack")
def _slack(node, params, ctx):
    name = node["name"]
    try:
        tv = float(node.get("typeVersion"))
    except (TypeError, ValueError):
        tv = None
    if tv is not None and tv < 2:
        node["typeVersion"] = 2.2
        ctx.change(f"{name}: upgraded Slack typeVersion to 2.2")
    _drop(params, "resource", ctx, name)
    params.setdefault("operation", "post")
    params.setdefault("authentication", "accessToken")
    _rename(params, "channelId", "channel", ctx, name)
    if "channel" in params:
        before = params["channel"]
        params["channel"] = slack_channel(before)
        if params["channel"] != before:
            ctx.change(f'{name}: channel "{before}" rewritten to "{params["channel"]}"')
            if isinstance(before, str) and _SLACK_ID_RE.match(before.strip()):
                ctx.suggest(f'Node "{name}": Slack channel ID "{before}" replaced with #general; set the real channel name')
    other = params.get("otherOptions")
    if other is not None and not isinstance(other, dict):
        params.pop("otherOptions")


@canonicalizer("telegram")
def _telegram(node, params, ctx):
    chat = params.get("chatId")
    if isinstance(chat, (int, float)) and not isinstance(chat, bool):
        params["chatId"] = str(int(chat))


# ---------- Spreadsheet / storage ----------

@canonicalizer("googleSheets")
def _sheets(node, params, ctx):
    name = node["name"]
    params.setdefault("operation", "append")
    _rename(params, "sheetId", "documentId", ctx, name)
    for key in ("documentId", "sheetName"):
        if isinstance(params.get(key), dict):
            params[key] = _locator_value(params[key])
            ctx.change(f'{name}: collapsed {key} resource locator')
    mv = params.get("mappingValues")
    if isinstance(mv, list):
        mapped = {}
        for entry in mv:
            if isinstance(entry, dict) and "column" in entry:
                mapped[str(entry["column"])] = entry.get("value")
        params["mappingValues"] = mapped


@canonicalizer("googleDrive")
def _drive(node, params, ctx):
    name = node["name"]
    if params.get("operation") == "list":
        params["operation"] = "search"
        ctx.change(f"{name}: folder list operation rewritten to search")
    if "binary" in params:
        params.pop("binary")
        params.setdefault("binaryPropertyName", "data")
    folder = params.pop("folderId", None)
    if folder is not None and "parents" not in params:
        params["parents"] = folder
    parents = params.get("parents")
    if parents is not None and not (isinstance(parents, dict) and parents.get("__rl") is True):
        params["parents"] = {"__rl": True, "value": str(_locator_value(parents)), "mode": "id"}
        ctx.change(f"{name}: folder reference rewritten as resource locator")
    _rename(params, "folderName", "name", ctx, name)


# ---------- AI ----------

@canonicalizer("openAi")
def _openai(node, params, ctx):
    params.setdefault("resource", "chat")
    prompt = params.get("prompt")
    if isinstance(prompt, str):
        params.pop("prompt")
        if "messages" not in params:
            params["messages"] = {"values": [{"content": prompt}]}
        ctx.change(f'{node["name"]}: moved prompt into messages')


# ---------- Required defaults (run after the allow-list strip) ----------

required_default("slack", "otherOptions", {})
required_default("httpRequest", "options", {})
required_default("webhook", "options", {})
required_default("googleSheets", "options", {})


# ---------- Public API ----------

def canonicalize(node: Dict[str, Any], ctx: FixContext) -> None:
    fn = _CANONICALIZERS.get(node.get("type"))
    if fn is None:
        return
    params = node.get("parameters")
    if not isinstance(params, dict):
        params = node["parameters"] = {}
    fn(node, params, ctx)


def inject_defaults(node: Dict[str, Any], ctx: FixContext) -> None:
    defaults = _DEFAULTS.get(node.get("type"))
    if not defaults:
        return
    params = node.setdefault("parameters", {})
    for key, value in defaults.items():
        if not isinstance(params.get(key), type(value)):
            params[key] = type(value)(value)
            ctx.change(f'{node.get("name")}: added required "{key}"')


def known_families() -> List[str]:
    return sorted(_CANONICALIZERS)

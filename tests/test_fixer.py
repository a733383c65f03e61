# tests/test_fixer.py

import copy

import pytest

from flowmend.fixer.pipeline import fix
from flowmend.model.schema import (
    ENVELOPE_KEYS,
    HOP_KEYS,
    META_KEYS,
    NODE_KEYS,
    SETTINGS_KEYS,
    is_reserved_key,
)
from flowmend.model.taxonomy import NodeFamily, family_of
from flowmend.structural.validator import validate


def _all_keys(value):
    if isinstance(value, dict):
        for k, v in value.items():
            yield k
            yield from _all_keys(v)
    elif isinstance(value, list):
        for v in value:
            yield from _all_keys(v)


def _targets(wf):
    for outputs in wf["connections"].values():
        for ports in outputs.values():
            for port in ports:
                for hop in port:
                    yield hop


@pytest.fixture
def noop_workflow(make_node, link):
    return {
        "name": "Relay",
        "nodes": [
            make_node("Trigger", "n8n-nodes-base.manualTrigger"),
            make_node("Do Nothing", "n8n-nodes-base.noOp"),
            make_node("Slack", "n8n-nodes-base.slack", {"channel": "#general", "text": "hi"}, type_version=2.2),
        ],
        "connections": link(("Trigger", "Do Nothing"), ("Do Nothing", "Slack")),
    }


@pytest.fixture
def metadata_workflow(make_node):
    return {
        "name": "Inbound hook",
        "_metadata": {"generatedBy": "llm"},
        "nodes": [
            make_node("Webhook", "n8n-nodes-base.webhook", {"httpMethod": "POST", "path": "inbound"},
                      webhookId="8d1f1f7e-1111-2222-3333-444455556666"),
        ],
        "connections": {},
    }


@pytest.fixture
def case_keyed_workflow(make_node):
    """Connection keys and hop targets differ from the node names only by case."""
    return {
        "name": "Subject filter",
        "nodes": [
            make_node("Gmail Trigger", "n8n-nodes-base.gmailTrigger", {"labelIds": ["INBOX"]}),
            make_node("Check", "n8n-nodes-base.if",
                      {"conditions": {"conditions": [{"leftValue": "={{ $json.subject }}",
                                                      "rightValue": "urgent", "operation": "contains"}]}}),
            make_node("Slack", "n8n-nodes-base.slack", {"channel": "#alerts", "text": "hi"}, type_version=2.2),
        ],
        "connections": {
            "gmail trigger": {"main": [[{"node": "check", "type": "main", "index": 0}]]},
            "CHECK": {"main": [[{"node": "slack", "type": "main", "index": 0}]]},
        },
    }


@pytest.fixture
def duplicate_names_workflow(make_node, link):
    return {
        "name": "Routing",
        "nodes": [
            make_node("Gmail Trigger", "n8n-nodes-base.gmailTrigger", {"labelIds": ["INBOX"]}),
            make_node("Route", "n8n-nodes-base.set", {"values": {}}),
            make_node("Route", "n8n-nodes-base.if",
                      {"conditions": {"conditions": [{"leftValue": "={{ $json.subject }}",
                                                      "rightValue": "x", "operation": "equals"}]}}),
            make_node("Slack", "n8n-nodes-base.slack", {"channel": "#alerts", "text": "hi"}, type_version=2.2),
        ],
        "connections": link(("Gmail Trigger", "Route"), ("Route", "Slack")),
    }


@pytest.fixture
def self_wired_noop_workflow(make_node):
    return {
        "name": "Loop relay",
        "nodes": [
            make_node("Trigger", "n8n-nodes-base.manualTrigger"),
            make_node("Pass", "n8n-nodes-base.noOp"),
            make_node("Slack", "n8n-nodes-base.slack", {"channel": "#general", "text": "hi"}, type_version=2.2),
        ],
        "connections": {
            "Trigger": {"main": [[{"node": "pass", "type": "main", "index": 0}]]},
            "pass": {"main": [[{"node": "Pass", "type": "main", "index": 0},
                               {"node": "Slack", "type": "main", "index": 0}]]},
        },
    }


PROPERTY_FIXTURES = ["noop_workflow", "metadata_workflow", "messy_workflow", "email_alert_workflow",
                     "case_keyed_workflow", "duplicate_names_workflow", "self_wired_noop_workflow"]


# ---------- Scenarios ----------

def test_noop_node_is_spliced_out(noop_workflow):
    result = fix(noop_workflow)
    wf = result.workflow

    assert [n["name"] for n in wf["nodes"]] == ["Trigger", "Slack"]
    assert not any(family_of(n["type"]) == NodeFamily.NOOP for n in wf["nodes"])
    assert wf["connections"]["Trigger"]["main"] == [[{"node": "Slack", "type": "main", "index": 0}]]
    assert any("No Operation" in s for s in result.suggestions)


def test_case_mismatched_keys_reach_the_upstream_node(case_keyed_workflow):
    wf = fix(case_keyed_workflow).workflow
    check = next(n for n in wf["nodes"] if n["name"] == "Check")

    assert check["parameters"]["conditions"]["conditions"][0]["leftValue"] == '={{ $json["headers"]["subject"] }}'
    assert wf["connections"] == {
        "Gmail Trigger": {"main": [[{"node": "Check", "type": "main", "index": 0}]]},
        "Check": {"main": [[{"node": "Slack", "type": "main", "index": 0}]]},
    }


def test_duplicate_names_keep_wiring_on_the_first_node(duplicate_names_workflow):
    wf = fix(duplicate_names_workflow).workflow
    by_name = {n["name"]: n for n in wf["nodes"]}

    assert by_name["Route"]["type"] == "n8n-nodes-base.set"
    assert by_name["Route 2"]["type"] == "n8n-nodes-base.if"
    assert wf["connections"]["Gmail Trigger"]["main"] == [[{"node": "Route", "type": "main", "index": 0}]]
    # no upstream for the renamed node, so its condition is not rewritten for Gmail
    cond = by_name["Route 2"]["parameters"]["conditions"]["conditions"][0]
    assert cond["leftValue"] == "={{ $json.subject }}"


def test_self_wired_noop_is_spliced_without_a_loop(self_wired_noop_workflow):
    wf = fix(self_wired_noop_workflow).workflow

    assert [n["name"] for n in wf["nodes"]] == ["Trigger", "Slack"]
    assert wf["connections"] == {"Trigger": {"main": [[{"node": "Slack", "type": "main", "index": 0}]]}}


def test_metadata_and_webhook_id_are_removed(metadata_workflow):
    result = fix(metadata_workflow)
    wf = result.workflow

    assert "_metadata" not in wf
    assert all("webhookId" not in n for n in wf["nodes"])
    assert any("webhookId" in s for s in result.suggestions)


def test_input_is_not_mutated(messy_workflow):
    before = copy.deepcopy(messy_workflow)
    fix(messy_workflow)
    assert messy_workflow == before


# ---------- Properties ----------

@pytest.mark.parametrize("fixture_name", PROPERTY_FIXTURES)
def test_fix_is_idempotent(fixture_name, request):
    doc = request.getfixturevalue(fixture_name)
    once = fix(doc)
    twice = fix(once.workflow)
    assert twice.workflow == once.workflow
    assert twice.changes == []


@pytest.mark.parametrize("doc", [None, 42, "text", [], {}, {"nodes": "nope"}, {"nodes": [None, 3, {}]}])
def test_fix_is_total(doc):
    wf = fix(doc).workflow
    assert isinstance(wf, dict)
    assert wf["nodes"] == []
    assert wf["connections"] == {}
    assert wf["name"] == "Generated Workflow"


@pytest.mark.parametrize("fixture_name", PROPERTY_FIXTURES)
def test_allow_list_closure(fixture_name, request):
    wf = fix(request.getfixturevalue(fixture_name)).workflow

    assert set(wf) <= ENVELOPE_KEYS
    assert set(wf["settings"]) <= SETTINGS_KEYS
    assert set(wf["meta"]) <= META_KEYS
    for node in wf["nodes"]:
        assert set(node) <= NODE_KEYS, node["name"]
    for hop in _targets(wf):
        assert set(hop) <= HOP_KEYS
    reserved = [k for k in _all_keys(wf) if is_reserved_key(k)]
    assert reserved == []


def test_resource_locator_marker_survives(make_node):
    doc = {
        "name": "Upload",
        "nodes": [make_node("Drive", "n8n-nodes-base.googleDrive",
                            {"operation": "upload", "parents": {"__rl": True, "value": "folder-1", "mode": "id"},
                             "_debug": True})],
        "connections": {},
    }
    params = fix(doc).workflow["nodes"][0]["parameters"]
    assert params["parents"] == {"__rl": True, "value": "folder-1", "mode": "id"}
    assert "_debug" not in params


@pytest.mark.parametrize("fixture_name", PROPERTY_FIXTURES)
def test_connection_integrity(fixture_name, request):
    wf = fix(request.getfixturevalue(fixture_name)).workflow
    names = [n["name"] for n in wf["nodes"]]

    assert len(set(names)) == len(names)
    assert set(wf["connections"]) <= set(names)
    for outputs in wf["connections"].values():
        for ports in outputs.values():
            assert isinstance(ports, list) and all(isinstance(p, list) for p in ports)
            assert ports and ports[-1]
            for port in ports:
                assert all(hop["node"] in names for hop in port)


def test_messy_connections_are_rebuilt(messy_workflow):
    wf = fix(messy_workflow).workflow
    # dangling "Ghost" branch dropped, trailing empty port trimmed
    assert wf["connections"]["Is Urgent?"]["main"] == [[{"node": "Slack", "type": "main", "index": 0}]]
    # case-insensitive reference resolved, object output wrapped
    assert wf["connections"]["Slack"]["main"] == [[{"node": "Call API", "type": "main", "index": 0}]]
    # duplicate hops collapsed after index coercion
    assert wf["connections"]["Set Fields"]["main"] == [[{"node": "Run Code", "type": "main", "index": 0}]]
    assert "bogus" not in wf["connections"]["Call API"]


# ---------- Envelope / node completion ----------

def test_messy_workflow_is_structurally_valid_after_fix(messy_workflow):
    assert not validate(messy_workflow).is_valid
    result = validate(fix(messy_workflow).workflow)
    assert result.is_valid, [e.to_dict() for e in result.errors]


def test_nodes_are_completed(messy_workflow):
    wf = fix(messy_workflow).workflow
    by_name = {n["name"]: n for n in wf["nodes"]}

    assert "Slack 2" in by_name
    ids = [n["id"] for n in wf["nodes"]]
    assert len(set(ids)) == len(ids)
    assert all(len(i) >= 5 for i in ids)
    assert by_name["Gmail Trigger"]["position"] == [100, 200]
    assert by_name["Gmail Trigger"]["type"] == "n8n-nodes-base.gmailTrigger"
    assert by_name["Slack"]["type"] == "n8n-nodes-base.slack"
    assert by_name["Slack"]["typeVersion"] == 2.2
    assert by_name["Slack 2"]["typeVersion"] == 2.2
    assert by_name["Set Fields"]["typeVersion"] == 1
    assert by_name["Call API"]["typeVersion"] == 4.1
    assert by_name["Call API"]["parameters"]["method"] == "POST"
    assert by_name["Call API"]["parameters"]["options"] == {}


def test_envelope_defaults(make_node):
    wf = fix({"nodes": [make_node("Start", "n8n-nodes-base.manualTrigger")]}).workflow

    assert wf["name"] == "Generated Workflow"
    assert wf["settings"] == {"executionOrder": "v1"}
    assert len(wf["meta"]["instanceId"]) == 64
    assert isinstance(wf["versionId"], str) and wf["versionId"]
    assert wf["pinData"] == {}


def test_expressions_are_normalized(messy_workflow):
    wf = fix(messy_workflow).workflow
    slack = next(n for n in wf["nodes"] if n["name"] == "Slack")
    assert slack["parameters"]["text"] == '={{ $json["subject"] }}'


def test_code_is_left_alone(make_node):
    code = "const x = $json['a'];\nreturn [{ json: { x } }];"
    doc = {"name": "c", "nodes": [make_node("Code", "n8n-nodes-base.code", {"jsCode": code})], "connections": {}}
    assert fix(doc).workflow["nodes"][0]["parameters"]["jsCode"] == code


def test_missing_type_is_inferred_from_name():
    doc = {"name": "n", "nodes": [{"name": "Google Sheets append", "parameters": {}}], "connections": {}}
    wf = fix(doc).workflow
    assert wf["nodes"][0]["type"] == "n8n-nodes-base.googleSheets"
    assert wf["nodes"][0]["parameters"]["options"] == {}


def test_fixer_never_adds_credentials(email_alert_workflow):
    for n in email_alert_workflow["nodes"]:
        n.pop("credentials", None)
    wf = fix(email_alert_workflow).workflow
    assert all("credentials" not in n for n in wf["nodes"])

# tests/conftest.py

import pytest


def _make_node(name, type_, parameters=None, type_version=1, position=None, **extra):
    node = {
        "id": "node-" + name.lower().replace(" ", "-"),
        "name": name,
        "type": type_,
        "typeVersion": type_version,
        "position": position if position is not None else [250, 300],
        "parameters": parameters if parameters is not None else {},
    }
    node.update(extra)
    return node


def _link(*pairs):
    conns = {}
    for src, tgt in pairs:
        conns.setdefault(src, {"main": [[]]})["main"][0].append({"node": tgt, "type": "main", "index": 0})
    return conns


@pytest.fixture
def make_node():
    return _make_node


@pytest.fixture
def link():
    return _link


@pytest.fixture
def email_alert_workflow():
    """Gmail trigger -> IF -> Slack, valid and importable."""
    return {
        "name": "Urgent email alerts",
        "nodes": [
            _make_node("Gmail Trigger", "n8n-nodes-base.gmailTrigger",
                       {"labelIds": ["INBOX"], "pollTimes": {"item": [{"mode": "everyMinute"}]}},
                       position=[250, 300], credentials={"gmailOAuth2": {"id": "1", "name": "Gmail"}}),
            _make_node("Is Urgent?", "n8n-nodes-base.if",
                       {"conditions": {"conditions": [{"leftValue": '={{ $json["headers"]["subject"] }}',
                                                       "rightValue": "urgent", "operation": "contains"}]},
                        "combineOperation": "all"},
                       position=[450, 300]),
            _make_node("Slack", "n8n-nodes-base.slack",
                       {"channel": "#alerts", "text": '={{ $json["headers"]["subject"] }}', "otherOptions": {}},
                       type_version=2.2, position=[650, 300],
                       credentials={"slackApi": {"id": "2", "name": "Slack"}}),
        ],
        "connections": _link(("Gmail Trigger", "Is Urgent?"), ("Is Urgent?", "Slack")),
        "settings": {"executionOrder": "v1"},
    }


@pytest.fixture
def messy_workflow():
    """The kind of document an LLM hands back: wrong spellings, stray fields, bad wiring."""
    return {
        "name": "Messy",
        "_metadata": {"model": "gpt", "tokens": 1200},
        "instructions": "import me",
        "nodes": [
            {"name": "Gmail Trigger", "type": "n8n-nodes-base.gmailtrigger",
             "parameters": {"options": {"labelIds": ["INBOX", "IMPORTANT"]}, "scope": "all", "simple": "true"},
             "position": {"x": 100, "y": 200}},
            {"name": "Is Urgent?", "type": "n8n-nodes-base.if", "id": "if",
             "parameters": {"conditions": [{"value1": "value1", "operation": "equals", "value2": "x"}]}},
            {"name": "Slack", "type": "slack", "typeVersion": 1, "webhookId": "abc-123",
             "parameters": {"channel": "Alerts Team", "text": "{{ $json['subject'] }}", "_hint": "x"}},
            {"name": "Slack", "type": "n8n-nodes-base.slack", "typeVersion": "2.2",
             "parameters": {"channel": "#ops"}},
            {"name": "Call API", "type": "n8n-nodes-base.httpRequest",
             "parameters": {"requestMethod": "post", "url": "https://example.com/hook"}},
            {"name": "Set Fields", "type": "n8n-nodes-base.set", "typeVersion": 3,
             "parameters": {"options": {"dotNotation": True}, "keepOnlySet": "false"}},
            {"name": "Run Code", "type": "n8n-nodes-base.code",
             "parameters": {"functionCode": "return items;"}},
            "not a node",
        ],
        "connections": {
            "Gmail Trigger": {"main": [[{"node": "Is Urgent?", "type": "main", "index": 0}]]},
            "Is Urgent?": {"main": [[{"node": "Slack", "type": "main", "index": 0, "_why": "x"}],
                                    [{"node": "Ghost", "type": "main", "index": 0}]]},
            "Slack": {"main": {"node": "call api"}},
            "Nobody": {"main": [[{"node": "Slack"}]]},
            "Call API": {"main": [[{"node": "Set Fields"}]], "bogus": [[{"node": "Run Code"}]]},
            "Set Fields": {"main": [[{"node": "Run Code", "index": "0"}, {"node": "Run Code", "index": 0}]]},
        },
        "settings": {"executionOrder": "v1", "unknownFlag": True},
    }

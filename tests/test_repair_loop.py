# tests/test_repair_loop.py

import json

import pytest

from flowmend.conformance.tester import SKIPPED_NOTE
from flowmend.errors import ConformanceTransportError
from flowmend.model.results import TestResult
from flowmend.repair.cache import ValidationCache
from flowmend.repair.loop import TIMEOUT_ERROR, RepairLoop, RepairOptions, is_trivially_simple

UNKNOWN_NODE = 'Unknown node "gmailtrigger"'


class FakeTester:
    """Replays results in order (the last one repeats); exceptions are raised."""

    def __init__(self, *results):
        self.results = list(results) or [TestResult(success=True)]
        self.seen = []

    def test(self, workflow):
        self.seen.append(workflow)
        item = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def calls(self):
        return len(self.seen)


class FakeGenerator:
    def __init__(self, reply):
        self.reply = reply
        self.prompts = []

    def regenerate(self, current, prompt, classification):
        self.prompts.append((prompt, classification.kind.value))
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


class TickingClock:
    def __init__(self, step):
        self.step = step
        self.now = 0.0

    def __call__(self):
        self.now += self.step
        return self.now


def _fail(error=UNKNOWN_NODE):
    return TestResult(success=False, error=error)


def _loop(tester, **kwargs):
    kwargs.setdefault("cache", ValidationCache())
    return RepairLoop(tester=tester, **kwargs)


@pytest.fixture
def simple_workflow(make_node, link):
    return {
        "name": "Ping",
        "nodes": [
            make_node("Start", "n8n-nodes-base.manualTrigger"),
            make_node("Slack", "n8n-nodes-base.slack", {"channel": "#ops", "text": "ping"}, type_version=2.2),
        ],
        "connections": link(("Start", "Slack")),
    }


# ---------- Attempt bound ----------

def test_always_failing_session_exhausts_attempts(email_alert_workflow):
    tester = FakeTester(_fail())
    outcome = _loop(tester).repair(email_alert_workflow, options=RepairOptions(max_attempts=3))

    assert outcome.success is False
    assert outcome.attempts == 3
    assert len(outcome.history) == 3
    assert tester.calls == 3
    assert outcome.validated is True
    assert outcome.last_error == UNKNOWN_NODE
    assert [h.error_type for h in outcome.history] == ["unknown_node"] * 3
    assert [h.fix_strategy for h in outcome.history] == ["fix_node_type"] * 3
    assert len(outcome.suggestions) == 1


@pytest.mark.parametrize("max_attempts", [1, 2, 5])
def test_tester_is_called_at_most_max_attempts(email_alert_workflow, max_attempts):
    tester = FakeTester(_fail())
    outcome = _loop(tester).repair(email_alert_workflow, options=RepairOptions(max_attempts=max_attempts))
    assert tester.calls == max_attempts
    assert outcome.attempts == max_attempts


def test_non_positive_attempts_still_test_once(email_alert_workflow):
    tester = FakeTester(_fail())
    _loop(tester, max_attempts=0).repair(email_alert_workflow)
    assert tester.calls == 1


def test_success_after_a_fix(email_alert_workflow):
    email_alert_workflow["nodes"][0]["type"] = "n8n-nodes-base.gmailtrigger"
    tester = FakeTester(_fail(), TestResult(success=True))
    outcome = _loop(tester).repair(email_alert_workflow)

    assert outcome.success
    assert outcome.attempts == 2
    assert [h.success for h in outcome.history] == [False, True]
    assert outcome.last_error is None
    # the second probe saw the fixed document
    assert tester.seen[1]["nodes"][0]["type"] == "n8n-nodes-base.gmailTrigger"
    assert outcome.workflow["nodes"][0]["type"] == "n8n-nodes-base.gmailTrigger"


def test_input_is_not_mutated(email_alert_workflow):
    before = json.dumps(email_alert_workflow, sort_keys=True)
    _loop(FakeTester(_fail())).repair(email_alert_workflow)
    assert json.dumps(email_alert_workflow, sort_keys=True) == before


# ---------- Cache ----------

def test_cache_hit_skips_testing(email_alert_workflow):
    tester = FakeTester()
    loop = _loop(tester)
    first = loop.repair(email_alert_workflow)
    reordered = json.loads(json.dumps(email_alert_workflow, sort_keys=True))
    second = loop.repair(reordered)

    assert first.cached is False
    assert second.cached is True
    assert second.workflow == first.workflow
    assert tester.calls == 1
    assert loop.cache_stats()["hits"] == 1


def test_cached_outcome_is_isolated_from_callers(email_alert_workflow):
    loop = _loop(FakeTester())
    first = loop.repair(email_alert_workflow)
    history_len = len(first.history)
    first.workflow["nodes"].clear()
    first.history.append("edited by caller")

    second = loop.repair(email_alert_workflow)
    assert second.cached is True
    assert [n["name"] for n in second.workflow["nodes"]] == ["Gmail Trigger", "Is Urgent?", "Slack"]
    assert len(second.history) == history_len

    second.workflow["name"] = "Renamed"
    assert loop.repair(email_alert_workflow).workflow["name"] == "Urgent email alerts"


def test_bypass_neither_reads_nor_writes(email_alert_workflow):
    tester = FakeTester()
    loop = _loop(tester)
    opts = RepairOptions(bypass_cache=True)
    loop.repair(email_alert_workflow, options=opts)
    loop.repair(email_alert_workflow, options=opts)

    assert tester.calls == 2
    assert loop.cache_stats() == {"size": 0, "hits": 0, "misses": 0, "hitRate": 0.0}


def test_failures_are_not_cached_by_default(email_alert_workflow):
    tester = FakeTester(_fail())
    loop = _loop(tester, max_attempts=1)
    loop.repair(email_alert_workflow)
    loop.repair(email_alert_workflow)
    assert tester.calls == 2


def test_exhausted_sessions_cached_when_enabled(email_alert_workflow):
    tester = FakeTester(_fail())
    loop = _loop(tester, max_attempts=1, cache_exhausted=True)
    loop.repair(email_alert_workflow)
    again = loop.repair(email_alert_workflow)
    assert tester.calls == 1
    assert again.cached and not again.success


def test_clear_cache(email_alert_workflow):
    loop = _loop(FakeTester())
    loop.repair(email_alert_workflow)
    loop.clear_cache()
    assert loop.cache_stats()["size"] == 0


# ---------- Fast path / untested mode ----------

def test_trivially_simple_document_skips_testing(simple_workflow):
    tester = FakeTester(_fail())
    outcome = _loop(tester).repair(simple_workflow)

    assert outcome.success
    assert outcome.attempts == 0
    assert outcome.history == []
    assert outcome.validated is False
    assert tester.calls == 0


def test_fast_path_can_be_disabled(simple_workflow):
    tester = FakeTester(_fail())
    outcome = _loop(tester, skip_simple=False, max_attempts=2).repair(simple_workflow)
    assert not outcome.success
    assert tester.calls == 2


def test_untested_mode_reports_not_validated(email_alert_workflow):
    outcome = RepairLoop(cache=ValidationCache()).repair(email_alert_workflow)
    assert outcome.success
    assert outcome.validated is False
    assert outcome.attempts == 1
    assert outcome.history[0].hint == SKIPPED_NOTE


def test_validated_when_engine_accepts(email_alert_workflow):
    outcome = _loop(FakeTester()).repair(email_alert_workflow)
    assert outcome.success and outcome.validated


@pytest.mark.parametrize("doc,expected", [
    (None, False),
    ({"nodes": []}, False),
    ({"nodes": ["x"]}, False),
    ({"nodes": [{"type": "n8n-nodes-base.manualTrigger"}]}, True),
    ({"nodes": [{"type": "n8n-nodes-base.if"}]}, False),
    ({"nodes": [{"type": "n8n-nodes-base.code"}]}, False),
    ({"nodes": [{"type": "n8n-nodes-base.set", "parameters": {"v": "={{ $json.a }}"}}]}, False),
    ({"nodes": [{"type": "n8n-nodes-base.set"}] * 4}, False),
])
def test_is_trivially_simple(doc, expected):
    assert is_trivially_simple(doc) is expected


# ---------- Failure folding / timeout ----------

def test_tester_exception_becomes_an_attempt(email_alert_workflow):
    tester = FakeTester(ConformanceTransportError("POST failed: 503", status_code=503), TestResult(success=True))
    outcome = _loop(tester).repair(email_alert_workflow)

    assert outcome.success
    assert outcome.attempts == 2
    assert outcome.history[0].error_type == "validation_error"
    assert "503" in outcome.history[0].error


def test_timeout_ends_the_session(email_alert_workflow):
    tester = FakeTester(_fail())
    loop = _loop(tester, clock=TickingClock(10), cache_exhausted=True)
    outcome = loop.repair(email_alert_workflow, options=RepairOptions(max_attempts=5, timeout=15))

    assert outcome.timed_out
    assert not outcome.success
    assert outcome.attempts == 1
    assert [h.error_type for h in outcome.history] == ["unknown_node", "timeout"]
    assert outcome.last_error == TIMEOUT_ERROR
    assert loop.cache_stats()["size"] == 0


# ---------- Regeneration ----------

REGENERATED = {
    "name": "Regenerated",
    "nodes": [{"id": "n1", "name": "Hook", "type": "n8n-nodes-base.webhook", "typeVersion": 1,
               "position": [0, 0], "parameters": {"httpMethod": "POST", "path": "in"}}],
    "connections": {},
}


def test_regenerated_document_is_tested_next(email_alert_workflow):
    tester = FakeTester(_fail(), TestResult(success=True))
    gen = FakeGenerator("Here you go:\n```json\n" + json.dumps(REGENERATED) + "\n```")
    outcome = _loop(tester, generator=gen).repair(email_alert_workflow, prompt="alert me")

    assert outcome.success
    assert tester.seen[1] == REGENERATED
    assert outcome.history[0].regenerated is True
    assert gen.prompts == [("alert me", "unknown_node")]


def test_unparseable_regeneration_keeps_fixed_document(email_alert_workflow):
    tester = FakeTester(_fail(), TestResult(success=True))
    gen = FakeGenerator("sorry, I cannot help with that")
    outcome = _loop(tester, generator=gen).repair(email_alert_workflow)

    assert outcome.success
    assert outcome.history[0].regenerated is False
    assert tester.seen[1]["name"] == email_alert_workflow["name"]


def test_generator_errors_do_not_end_the_session(email_alert_workflow):
    tester = FakeTester(_fail(), TestResult(success=True))
    gen = FakeGenerator(RuntimeError("rate limited"))
    outcome = _loop(tester, generator=gen).repair(email_alert_workflow)
    assert outcome.success
    assert len(gen.prompts) == 1


def test_no_regeneration_after_the_last_attempt(email_alert_workflow):
    gen = FakeGenerator(json.dumps(REGENERATED))
    _loop(FakeTester(_fail()), generator=gen).repair(email_alert_workflow,
                                                     options=RepairOptions(max_attempts=2))
    assert len(gen.prompts) == 1


# ---------- Bulk ----------

def test_bulk_preserves_order(email_alert_workflow):
    items = []
    for i in range(7):
        doc = json.loads(json.dumps(email_alert_workflow))
        doc["name"] = f"wf-{i}"
        items.append((doc, f"prompt {i}"))

    results = _loop(FakeTester()).repair_bulk(items, batch_size=3)
    assert [r.workflow["name"] for r in results] == [f"wf-{i}" for i in range(7)]
    assert all(r.success for r in results)


def test_bulk_of_nothing():
    assert _loop(FakeTester()).repair_bulk([]) == []

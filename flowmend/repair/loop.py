# flowmend/repair/loop.py
"""
Repair loop: Tester -> Classifier -> Fixer -> (optional regeneration) -> Tester,
bounded by max_attempts. One session is strictly sequential; sessions only
share the cache.
"""
from __future__ import annotations

import copy
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx

from flowmend.config import Settings
from flowmend.conformance.classifier import ErrorClassifier
from flowmend.conformance.tester import ConformanceTester
from flowmend.errors import DocumentParseError
from flowmend.fixer.pipeline import fix
from flowmend.generator.regen import OpenAIGenerator, WorkflowGenerator, extract_document
from flowmend.model.results import AttemptRecord, ErrorKind, RepairOutcome
from flowmend.model.taxonomy import BRANCHING_FAMILIES, CODE_FAMILIES, family_of
from flowmend.repair.cache import RepairCache, ValidationCache, document_hash, get_validation_cache
from flowmend.structural.validator import validate
from flowmend.utils.io import canonical_json
from flowmend.utils.logger import get_logger, session_logger

log = get_logger("repair")

SIMPLE_MAX_NODES = 3
TIMEOUT_ERROR = "Repair session timed out"


# ---------- Fast path ----------

def is_trivially_simple(workflow: Any) -> bool:
    """
    Heuristic shortcut: small documents without branching, looping, code or
    template expressions are accepted without a live test. It can pass a
    document the engine would reject; disable with skip_simple=False.
    """
    if not isinstance(workflow, dict):
        return False
    nodes = workflow.get("nodes")
    if not isinstance(nodes, list) or not nodes or len(nodes) > SIMPLE_MAX_NODES:
        return False
    for node in nodes:
        if not isinstance(node, dict):
            return False
        fam = family_of(node.get("type"))
        if fam in BRANCHING_FAMILIES or fam in CODE_FAMILIES:
            return False
    return "{{" not in canonical_json(workflow)


def _dedupe(items: Iterable[Optional[str]]) -> List[str]:
    seen: List[str] = []
    for item in items:
        if item and item not in seen:
            seen.append(item)
    return seen


@dataclass(frozen=True)
class RepairOptions:
    max_attempts: Optional[int] = None
    bypass_cache: bool = False
    timeout: Optional[float] = None  # seconds for the whole session


# ---------- Orchestrator ----------

class RepairLoop:
    def __init__(
        self,
        tester: Optional[ConformanceTester] = None,
        generator: Optional[WorkflowGenerator] = None,
        cache: Optional[RepairCache] = None,
        classifier: Optional[ErrorClassifier] = None,
        max_attempts: int = 3,
        skip_simple: bool = True,
        cache_exhausted: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.tester = tester or ConformanceTester()
        self.generator = generator
        self.cache = cache if cache is not None else ValidationCache()
        self.classifier = classifier or ErrorClassifier()
        self.max_attempts = max_attempts
        self.skip_simple = skip_simple
        self.cache_exhausted = cache_exhausted
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.Client] = None,
                      generator: Optional[WorkflowGenerator] = None) -> "RepairLoop":
        """Production wiring: configured transport, shared cache, OpenAI regeneration when keyed."""
        if generator is None and settings.openai_api_key:
            generator = OpenAIGenerator(settings)
        return cls(
            tester=ConformanceTester.from_settings(settings, client=client),
            generator=generator,
            cache=get_validation_cache(settings.cache_ttl_minutes, settings.cache_max_size),
            max_attempts=settings.max_attempts,
            skip_simple=settings.skip_simple,
            cache_exhausted=settings.cache_exhausted,
        )

    # ----- public API -----

    def repair(self, document: Any, prompt: str = "", options: Optional[RepairOptions] = None) -> RepairOutcome:
        opts = options or RepairOptions()
        max_attempts = max(1, opts.max_attempts or self.max_attempts)
        key = document_hash(document)
        slog = session_logger(log, key)
        slog.info("session start (max_attempts=%d)", max_attempts)

        advisory = validate(document)
        slog.info("advisory validation: score=%d errors=%d warnings=%d",
                 advisory.score, len(advisory.errors), len(advisory.warnings))

        if not opts.bypass_cache:
            cached = self.cache.get(key)
            if cached is not None:
                slog.info("cache hit")
                return replace(cached, cached=True)
            slog.debug("cache miss")

        if self.skip_simple and is_trivially_simple(document):
            fixed = fix(document)
            outcome = RepairOutcome(success=True, workflow=fixed.workflow, attempts=0, history=[],
                                    validated=False, notes=fixed.suggestions)
            slog.info("trivially simple document accepted without testing")
            self._store(key, outcome, opts)
            return outcome

        outcome = self._run(document, prompt, max_attempts, opts, slog)
        if outcome.success or self.cache_exhausted:
            self._store(key, outcome, opts)
        slog.info("session finished: success=%s attempts=%d%s", outcome.success,
                 outcome.attempts, " (timed out)" if outcome.timed_out else "")
        return outcome

    def repair_bulk(self, items: Sequence[Tuple[Any, str]], batch_size: int = 5,
                    options: Optional[RepairOptions] = None) -> List[RepairOutcome]:
        """Repair (document, prompt) pairs, batch_size sessions at a time; order is preserved."""
        batch_size = max(1, batch_size)
        results: List[RepairOutcome] = []
        with ThreadPoolExecutor(max_workers=batch_size) as pool:
            for start in range(0, len(items), batch_size):
                batch = items[start:start + batch_size]
                results.extend(pool.map(lambda item: self.repair(item[0], item[1], options), batch))
                log.info("bulk repair: %d/%d done", len(results), len(items))
        ok = sum(1 for r in results if r.success)
        if results:
            log.info("bulk repair success rate: %.1f%% (%d/%d)", ok / len(results) * 100, ok, len(results))
        return results

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    # ----- internals -----

    def _store(self, key: str, outcome: RepairOutcome, opts: RepairOptions) -> None:
        if opts.bypass_cache or outcome.timed_out:
            return
        self.cache.set(key, outcome)

    def _run(self, document: Any, prompt: str, max_attempts: int, opts: RepairOptions,
             slog: logging.LoggerAdapter) -> RepairOutcome:
        deadline = self._clock() + opts.timeout if opts.timeout is not None else None
        current = copy.deepcopy(document)
        history: List[AttemptRecord] = []
        notes: List[str] = []
        success = validated = timed_out = False
        last_error: Optional[str] = None
        attempts = 0

        for attempt in range(1, max_attempts + 1):
            if deadline is not None and self._clock() >= deadline:
                slog.warning("deadline reached before attempt %d/%d", attempt, max_attempts)
                history.append(AttemptRecord(attempt=attempt, success=False, error=TIMEOUT_ERROR,
                                             error_type=ErrorKind.TIMEOUT.value))
                last_error = TIMEOUT_ERROR
                timed_out = True
                break

            attempts = attempt
            slog.info("attempt %d/%d", attempt, max_attempts)
            try:
                result = self.tester.test(current)
            except Exception as e:  # folded into history as validation_error
                slog.warning("conformance test raised: %s", e, exc_info=True)
                last_error = str(e)
                history.append(AttemptRecord(attempt=attempt, success=False, error=last_error,
                                             error_type=ErrorKind.VALIDATION_ERROR.value))
                continue

            if result.success:
                history.append(AttemptRecord(attempt=attempt, success=True, hint=result.note))
                success = True
                validated = validated or not result.skipped
                last_error = None
                break

            validated = True
            last_error = result.error
            classification = self.classifier.classify(result.error)
            record = AttemptRecord(attempt=attempt, success=False, error=result.error,
                                   error_type=classification.kind.value,
                                   fix_strategy=classification.fix_strategy.value,
                                   hint=classification.hint or None)
            history.append(record)

            fixed = fix(current, classification)
            current = fixed.workflow
            notes.extend(fixed.suggestions)

            if attempt < max_attempts and self.generator is not None:
                regenerated = self._regenerate(current, prompt, classification, slog)
                if regenerated is not None:
                    current = regenerated
                    record.regenerated = True

        return RepairOutcome(
            success=success,
            workflow=current,
            attempts=attempts,
            history=history,
            validated=validated,
            last_error=last_error,
            suggestions=_dedupe(h.hint for h in history if not h.success),
            notes=_dedupe(notes),
            timed_out=timed_out,
        )

    def _regenerate(self, current: Dict[str, Any], prompt: str, classification,
                    slog: logging.LoggerAdapter) -> Optional[Dict[str, Any]]:
        """Best effort: None keeps the deterministically fixed document."""
        try:
            text = self.generator.regenerate(current, prompt, classification)
        except Exception as e:  # keeps the fixed document
            slog.warning("regeneration failed: %s", e)
            return None
        try:
            doc = extract_document(text)
        except DocumentParseError as e:
            slog.info("regeneration rejected: %s", e)
            return None
        slog.info("regeneration accepted (%d nodes)", len(doc.get("nodes", [])))
        return doc

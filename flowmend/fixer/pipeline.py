# flowmend/fixer/pipeline.py
"""
Deterministic fixer: fix(document, classification=None) -> FixResult.

Total over any JSON value, never touches the network, and idempotent:
fix(fix(d).workflow).workflow == fix(d).workflow.
"""
import copy
from typing import Any, Callable, Dict, List, Optional

from flowmend.fixer.context import FixContext
from flowmend.fixer.passes import (
    canonicalize_families,
    coerce_document,
    complete_envelope,
    inject_required_defaults,
    normalize_expressions,
    normalize_node_types,
    rebuild_connections,
    remove_noop_nodes,
    rename_duplicate_nodes,
    strip_unknown_fields,
)
from flowmend.fixer.targeted import apply_strategy
from flowmend.model.results import ErrorClassification, FixResult
from flowmend.structural.advice import workflow_advice
from flowmend.utils.logger import get_logger

log = get_logger("fixer")

Pass = Callable[[Dict[str, Any], FixContext], Dict[str, Any]]

# Order matters: later passes assume earlier ones normalized structure, and
# required defaults go last so the strip cannot remove them.
PASSES: List[Pass] = [
    rename_duplicate_nodes,
    remove_noop_nodes,
    normalize_node_types,
    normalize_expressions,
    canonicalize_families,
    complete_envelope,
    rebuild_connections,
    strip_unknown_fields,
    inject_required_defaults,
]


def fix(document: Any, classification: Optional[ErrorClassification] = None) -> FixResult:
    """
    Run the targeted repair for `classification` (if any), then every pass.
    The input is never mutated; suggestions are returned beside the document.
    """
    ctx = FixContext()
    wf = coerce_document(copy.deepcopy(document), ctx)
    for text in workflow_advice(wf):
        ctx.suggest(text)

    if classification is not None:
        log.info("targeted fix: %s %s", classification.fix_strategy.value, classification.captures)
        wf = apply_strategy(wf, classification, ctx)
        wf = coerce_document(wf, ctx)

    for step in PASSES:
        wf = step(wf, ctx)

    log.debug("fixer applied %d change(s)", len(ctx.changes))
    return FixResult(workflow=wf, suggestions=list(ctx.suggestions), changes=list(ctx.changes))

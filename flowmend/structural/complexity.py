# flowmend/structural/complexity.py

from typing import Any, Dict, Tuple

from flowmend.model.taxonomy import NodeFamily, family_of
from flowmend.utils.graph import build_graph

# Score bands per declared target level, inclusive and overlapping.
COMPLEXITY_BANDS: Dict[str, Tuple[int, int]] = {
    "simple": (0, 30),
    "moderate": (15, 70),
    "complex": (50, 100),
}

# Complexity inside this open interval earns the "balanced" scoring bonus.
BALANCED_BAND: Tuple[int, int] = (20, 80)

_WEIGHTS = {"node": 5, "conditional": 10, "loop": 15, "code": 8, "edge": 2}


def compute_complexity(workflow: Dict[str, Any]) -> Dict[str, Any]:
    """
    Coarse complexity estimate:
        nodes*5 + conditionals*10 + loops*15 + code*8 + edges*2, capped at 100.
    Returns counts alongside the score so reports can explain it.
    """
    nodes = [n for n in (workflow.get("nodes") or []) if isinstance(n, dict)]
    families = [family_of(n.get("type")) for n in nodes]

    n_cond = sum(1 for f in families if f in (NodeFamily.CONDITIONAL, NodeFamily.SWITCH))
    n_loop = sum(1 for f in families if f == NodeFamily.LOOP)
    n_code = sum(1 for f in families if f in (NodeFamily.CODE, NodeFamily.FUNCTION))
    n_edges = build_graph(workflow).number_of_edges()

    raw = (
        len(nodes) * _WEIGHTS["node"]
        + n_cond * _WEIGHTS["conditional"]
        + n_loop * _WEIGHTS["loop"]
        + n_code * _WEIGHTS["code"]
        + n_edges * _WEIGHTS["edge"]
    )
    return {
        "score": min(100, raw),
        "n_nodes": len(nodes),
        "n_conditionals": n_cond,
        "n_loops": n_loop,
        "n_code": n_code,
        "n_edges": n_edges,
    }


def within_band(score: int, level: str) -> bool:
    lo, hi = COMPLEXITY_BANDS[level]
    return lo <= score <= hi


def is_balanced(score: int) -> bool:
    lo, hi = BALANCED_BAND
    return lo < score < hi

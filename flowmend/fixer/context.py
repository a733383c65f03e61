# flowmend/fixer/context.py
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from flowmend.utils.logger import get_logger

log = get_logger("fixer")


@dataclass
class FixContext:
    """Per-run scratch state shared by the fixer passes."""
    workflow_name: str = ""
    changes: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    # node name -> first upstream node (raw dict), refreshed before family canonicalization
    upstream: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def change(self, msg: str) -> None:
        log.debug("fix: %s", msg)
        self.changes.append(msg)

    def suggest(self, msg: str) -> None:
        if msg not in self.suggestions:
            self.suggestions.append(msg)

    def upstream_of(self, name: str) -> Optional[Dict[str, Any]]:
        return self.upstream.get(name)

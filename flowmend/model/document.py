# flowmend/model/document.py
"""
Typed view over an n8n workflow document.

The repair pipeline itself works on plain JSON trees; this model is what the
validator and the CLI read once a document has passed the schema gate.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from flowmend.model.taxonomy import NodeFamily, family_of
from flowmend.utils.graph import iter_edges


# ---------- Parameters: tagged union keyed by family ----------

@dataclass
class NodeParameters:
    family: NodeFamily
    raw: Dict[str, Any]


@dataclass
class UnknownParameters(NodeParameters):
    """Family not modeled; the untyped map is carried as-is."""


@dataclass
class ConditionalParameters(NodeParameters):
    conditions: List[Dict[str, Any]] = field(default_factory=list)
    combine_operation: Optional[str] = None


@dataclass
class MessagingParameters(NodeParameters):
    channel: Optional[str] = None
    text: Optional[str] = None


@dataclass
class HttpParameters(NodeParameters):
    method: Optional[str] = None
    url: Optional[str] = None


@dataclass
class WebhookParameters(NodeParameters):
    http_method: Optional[str] = None
    path: Optional[str] = None


def _flatten_conditions(raw: Dict[str, Any]) -> List[Dict[str, Any]]:
    conds = raw.get("conditions")
    if isinstance(conds, list):
        return [c for c in conds if isinstance(c, dict)]
    if not isinstance(conds, dict):
        return []
    out: List[Dict[str, Any]] = []
    for key, value in conds.items():
        if key in ("options", "combinator"):
            continue
        if isinstance(value, list):
            out.extend(c for c in value if isinstance(c, dict))
    return out


def parse_parameters(family: NodeFamily, raw: Any) -> NodeParameters:
    params = raw if isinstance(raw, dict) else {}
    if family == NodeFamily.CONDITIONAL:
        return ConditionalParameters(
            family, params,
            conditions=_flatten_conditions(params),
            combine_operation=params.get("combineOperation"),
        )
    if family == NodeFamily.MESSAGING:
        channel = params.get("channel", params.get("channelId"))
        return MessagingParameters(family, params, channel=channel if isinstance(channel, str) else None,
                                   text=params.get("text"))
    if family == NodeFamily.HTTP_CALL:
        return HttpParameters(family, params, method=params.get("method"), url=params.get("url"))
    if family == NodeFamily.WEBHOOK_TRIGGER:
        return WebhookParameters(family, params, http_method=params.get("httpMethod"), path=params.get("path"))
    return UnknownParameters(family, params)


# ---------- Graph elements ----------

@dataclass
class Node:
    id: str
    name: str
    type: str
    type_version: Optional[float] = None
    position: Any = None
    parameters: NodeParameters = None  # type: ignore[assignment]
    credentials: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def family(self) -> NodeFamily:
        return self.parameters.family

    @property
    def has_valid_position(self) -> bool:
        p = self.position
        return (
            isinstance(p, (list, tuple)) and len(p) == 2
            and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in p)
        )

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Node":
        known = {"id", "name", "type", "typeVersion", "position", "parameters", "credentials"}
        type_tag = str(raw.get("type", ""))
        return cls(
            id=str(raw.get("id", "")),
            name=str(raw.get("name", "")),
            type=type_tag,
            type_version=raw.get("typeVersion"),
            position=raw.get("position"),
            parameters=parse_parameters(family_of(type_tag), raw.get("parameters")),
            credentials=raw.get("credentials") if isinstance(raw.get("credentials"), dict) else None,
            extra={k: v for k, v in raw.items() if k not in known},
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "typeVersion": self.type_version,
            "position": list(self.position) if isinstance(self.position, (list, tuple)) else self.position,
            "parameters": self.parameters.raw,
        }
        if self.credentials is not None:
            out["credentials"] = self.credentials
        out.update(self.extra)
        return out


@dataclass(frozen=True)
class Connection:
    source: str
    target: str
    port_type: str = "main"
    output_index: int = 0
    target_index: int = 0


@dataclass
class WorkflowDocument:
    name: str
    nodes: List[Node]
    connections: Dict[str, Any]
    settings: Dict[str, Any] = field(default_factory=dict)
    envelope: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "WorkflowDocument":
        return cls(
            name=str(raw.get("name", "")),
            nodes=[Node.from_dict(n) for n in raw.get("nodes") or [] if isinstance(n, dict)],
            connections=raw.get("connections") if isinstance(raw.get("connections"), dict) else {},
            settings=raw.get("settings") if isinstance(raw.get("settings"), dict) else {},
            envelope={k: v for k, v in raw.items() if k not in ("name", "nodes", "connections", "settings")},
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "nodes": [n.to_dict() for n in self.nodes],
            "connections": self.connections,
            "settings": self.settings,
        }
        out.update(self.envelope)
        return out

    def node_names(self) -> List[str]:
        return [n.name for n in self.nodes]

    def by_name(self) -> Dict[str, Node]:
        return {n.name: n for n in self.nodes}

    def edges(self) -> List[Connection]:
        out: List[Connection] = []
        for src, out_type, idx, hop in iter_edges(self.connections):
            tgt = hop.get("node")
            if not isinstance(tgt, str):
                continue
            target_index = hop.get("index", 0)
            out.append(Connection(
                source=src,
                target=tgt,
                port_type=str(hop.get("type", out_type)),
                output_index=idx,
                target_index=target_index if isinstance(target_index, int) else 0,
            ))
        return out

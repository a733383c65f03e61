# flowmend/utils/graph.py
from typing import Dict, Any, Iterator, List, Optional, Tuple
import networkx as nx


def iter_edges(connections: Any) -> Iterator[Tuple[str, str, int, Dict[str, Any]]]:
    """
    Walk n8n connections and yield (source_name, output_type, output_index, hop).

    connections[<source>][<outputType>][<outputIndex>] -> list of {node, type, index}.
    Tolerates a bare hop object or a bare hop list where an array-of-arrays is expected.
    """
    if not isinstance(connections, dict):
        return
    for src_name, outs in connections.items():
        if not isinstance(outs, dict):
            continue
        for out_type, ports in outs.items():
            if isinstance(ports, dict):
                ports = [[ports]]
            if not isinstance(ports, list):
                continue
            for idx, hops in enumerate(ports):
                if isinstance(hops, dict):
                    hops = [hops]
                if not isinstance(hops, list):
                    continue
                for hop in hops:
                    if isinstance(hop, dict):
                        yield src_name, out_type, idx, hop


def build_graph(workflow: Dict[str, Any]) -> nx.DiGraph:
    """
    Build a directed graph keyed by node *name* (the join key n8n uses in connections).
    Edges whose endpoints are not declared nodes are skipped.
    """
    G = nx.DiGraph()
    nodes = workflow.get("nodes") if isinstance(workflow, dict) else None
    for n in nodes or []:
        if isinstance(n, dict) and isinstance(n.get("name"), str):
            G.add_node(n["name"], type=n.get("type"))

    for src, _out_type, _idx, hop in iter_edges((workflow or {}).get("connections")):
        tgt = hop.get("node")
        if src in G and tgt in G:
            G.add_edge(src, tgt)
    return G


def find_cycle_path(G: nx.DiGraph) -> Optional[List[str]]:
    """Return the node names of one directed cycle (first node repeated at the end), or None."""
    try:
        edges = nx.find_cycle(G, orientation="original")
    except nx.NetworkXNoCycle:
        return None
    path = [u for u, _v, *_ in edges]
    path.append(edges[-1][1])
    return path


def cycle_back_edge(G: nx.DiGraph) -> Optional[Tuple[str, str]]:
    """The closing edge of the first cycle found, i.e. the edge whose removal breaks it."""
    try:
        edges = nx.find_cycle(G, orientation="original")
    except nx.NetworkXNoCycle:
        return None
    u, v = edges[-1][0], edges[-1][1]
    return u, v


def orphaned_nodes(G: nx.DiGraph) -> List[str]:
    """Nodes touched by no connection at all (only meaningful when the graph has >1 node)."""
    if G.number_of_nodes() <= 1:
        return []
    return [n for n in G.nodes if G.in_degree(n) + G.out_degree(n) == 0]

import logging

import networkx as nx

logger = logging.getLogger(__name__)

DEFAULT_MAX_NODES = 500


def _hex(addr) -> str:
    return hex(addr) if isinstance(addr, int) else str(addr)


def _sort_key(node):
    # addresses first, numerically; anything else after, by text
    if isinstance(node, int):
        return (0, node, "")
    return (1, 0, str(node))


def summarize_call_graph(graph, names=None, entry=None, imported=None,
                         max_nodes: int = DEFAULT_MAX_NODES) -> dict:
    """
    Reduce a function-level call graph to a JSON-friendly summary.

    graph    : networkx (Multi)DiGraph whose nodes are function addresses
    names    : {address: function name}
    entry    : address of the entry-point function, if known
    imported : addresses of imported (library / stub) functions
    """
    names = names or {}
    imported = set(imported or ())
    simple = nx.DiGraph(graph)

    def label(node):
        return names.get(node) or _hex(node)

    reachable = set()
    if entry is not None and entry in simple:
        reachable = nx.descendants(simple, entry)

    recursive = set()
    for component in nx.strongly_connected_components(simple):
        if len(component) > 1:
            recursive.update(component)
    recursive.update(n for n in simple if simple.has_edge(n, n))

    ordered = sorted(simple.nodes, key=_sort_key)
    kept = ordered[:max_nodes]
    kept_set = set(kept)

    return {
        "enabled": True,
        "error": None,
        "num_functions": simple.number_of_nodes(),
        "num_edges": simple.number_of_edges(),
        "entry": _hex(entry) if entry is not None else None,
        "max_out_degree": max((d for _, d in simple.out_degree()), default=0),
        "imported_calls": sorted(label(n) for n in reachable & imported),
        "recursive_functions": sorted(label(n) for n in recursive),
        "nodes": [
            {"address": _hex(n), "name": label(n), "imported": n in imported}
            for n in kept
        ],
        "edges": [
            [_hex(u), _hex(v)]
            for u, v in simple.edges
            if u in kept_set and v in kept_set
        ],
        "truncated": len(kept) < simple.number_of_nodes(),
    }


def build_call_graph(file_path: str, max_nodes: int = DEFAULT_MAX_NODES) -> dict:
    """
    Recover the control-flow graph with angr (CFGFast, no shared libraries)
    and summarise the resulting function call graph.

    angr is heavy, so it is only imported when call graphs are requested.
    """
    try:
        import angr
    except ImportError:
        return {
            "enabled": True,
            "error": "angr is not installed (pip install 'maiware[callgraph]')",
        }

    try:
        project = angr.Project(file_path, auto_load_libs=False)
        project.analyses.CFGFast(normalize=True)
    except Exception as e:
        # angr raises a wide range of loader / lifter errors on malformed input
        logger.warning("[CallGraph] Recovery failed for %s: %s", file_path, e)
        return {"enabled": True, "error": str(e)}

    functions = project.kb.functions
    names = {}
    imported = set()
    for addr, func in functions.items():
        names[addr] = func.name
        if func.is_simprocedure or func.is_plt:
            imported.add(addr)

    entry = project.entry if project.entry in functions else None
    summary = summarize_call_graph(
        project.kb.callgraph, names=names, entry=entry,
        imported=imported, max_nodes=max_nodes)

    logger.info("[CallGraph] %s: %d functions, %d edges",
                file_path, summary["num_functions"], summary["num_edges"])
    return summary

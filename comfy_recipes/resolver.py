"""
Comfy Recipes - Reference Resolver
==================================

Integrity checks for node graphs.

Checks:
- Every reference resolves to a node in the same graph
- Referenced output slots exist (when the catalog knows the target kind)
- Raw documents contain no cycles (a Graph is acyclic by construction)

Works on a Graph or on a raw API-format document, so documents produced
elsewhere can be checked before they are queued.
"""

from collections.abc import Iterator, Mapping
from typing import Any, NamedTuple

from .catalog import NodeCatalog
from .exceptions import ReferentialIntegrityError
from .graph import Graph
from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "DanglingReference",
    "find_dangling_references",
    "find_cycle",
    "check_integrity",
]


class DanglingReference(NamedTuple):
    """One unresolved binding."""

    from_node: str
    to_node: str
    port: str
    message: str

    def to_error(self) -> ReferentialIntegrityError:
        return ReferentialIntegrityError(
            self.from_node, self.to_node, self.port, message=self.message
        )


def _is_link(value: Any) -> bool:
    # Connection format: [source_node_id, output_index]
    return (
        isinstance(value, (list, tuple))
        and len(value) == 2
        and isinstance(value[0], (str, int))
        and not isinstance(value[0], bool)
        and isinstance(value[1], int)
        and not isinstance(value[1], bool)
    )


def _as_document(graph: Graph | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(graph, Graph):
        return graph.to_document()
    return graph


def _iter_links(document: Mapping[str, Any]) -> Iterator[tuple[str, str, str, int]]:
    """Yield ``(node_id, port, source_id, slot)`` for every connection."""
    for node_id, node in document.items():
        if not isinstance(node, Mapping):
            continue
        inputs = node.get("inputs")
        if not isinstance(inputs, Mapping):
            continue
        for port, value in inputs.items():
            if _is_link(value):
                yield str(node_id), port, str(value[0]), value[1]


def find_dangling_references(
    graph: Graph | Mapping[str, Any],
    catalog: NodeCatalog | None = None,
) -> list[DanglingReference]:
    """
    Find every reference that does not resolve.

    Args:
        graph: A Graph or a raw document
        catalog: Optional catalog used to check output slot bounds
            (defaults to the Graph's own catalog)

    Returns:
        All failures, in document order (empty if the graph is sound)
    """
    if catalog is None and isinstance(graph, Graph):
        catalog = graph.catalog
    document = _as_document(graph)
    node_ids = {str(node_id) for node_id in document}

    dangling: list[DanglingReference] = []
    for node_id, port, source_id, slot in _iter_links(document):
        if source_id not in node_ids:
            dangling.append(
                DanglingReference(
                    node_id,
                    source_id,
                    port,
                    f"Node '{node_id}' input '{port}' references non-existent node '{source_id}'",
                )
            )
            continue
        source = document.get(source_id)
        if source is None:
            source = next(node for key, node in document.items() if str(key) == source_id)
        if not isinstance(source, Mapping):
            dangling.append(
                DanglingReference(
                    node_id,
                    source_id,
                    port,
                    f"Node '{node_id}' input '{port}' references malformed node '{source_id}'",
                )
            )
            continue
        if catalog is None:
            continue
        count = catalog.output_count(source.get("class_type", ""))
        if count is not None and not 0 <= slot < count:
            dangling.append(
                DanglingReference(
                    node_id,
                    source_id,
                    port,
                    f"Node '{node_id}' input '{port}' references output {slot} of "
                    f"'{source_id}' ({source.get('class_type')} has {count} outputs)",
                )
            )
    return dangling


def find_cycle(document: Graph | Mapping[str, Any]) -> list[str] | None:
    """
    Find a cycle using DFS.

    Returns:
        The node ids along one cycle (first id repeated at the end), or None
    """
    document = _as_document(document)
    edges: dict[str, list[str]] = {str(node_id): [] for node_id in document}
    for node_id, _port, source_id, _slot in _iter_links(document):
        if source_id in edges:
            edges[node_id].append(source_id)

    visited: set[str] = set()
    stack: list[str] = []
    on_stack: set[str] = set()

    def visit(node: str) -> list[str] | None:
        visited.add(node)
        stack.append(node)
        on_stack.add(node)
        for neighbor in edges[node]:
            if neighbor in on_stack:
                return stack[stack.index(neighbor) :] + [neighbor]
            if neighbor not in visited:
                cycle = visit(neighbor)
                if cycle:
                    return cycle
        stack.pop()
        on_stack.discard(node)
        return None

    for node in edges:
        if node not in visited:
            cycle = visit(node)
            if cycle:
                return cycle
    return None


def check_integrity(
    graph: Graph | Mapping[str, Any],
    catalog: NodeCatalog | None = None,
) -> None:
    """
    Reject a graph with dangling references or cycles.

    Raises:
        ReferentialIntegrityError: On the first failure; every failure is
            listed in ``details["dangling"]``
    """
    dangling = find_dangling_references(graph, catalog)
    if dangling:
        error = dangling[0].to_error()
        error.add_context("dangling", [d.message for d in dangling])
        logger.error(
            error.developer_message,
            extra={"dangling_count": len(dangling)},
        )
        raise error

    if isinstance(graph, Graph):
        return

    cycle = find_cycle(graph)
    if cycle:
        raise ReferentialIntegrityError(
            cycle[0],
            cycle[1],
            "<cycle>",
            message=f"Workflow contains a cycle: {' -> '.join(cycle)}",
        )

"""
Comfy Recipes - Graph Builder
=============================

Immutable node graph in ComfyUI's API prompt format.

A Graph is a mapping of node id to Node. Graph.append() never mutates the
receiver: it returns a new Graph holding the extra node, together with the
id it was given. Ids are decimal strings drawn from a per-graph counter and
are never reused, so a node can only reference nodes that already exist and
every graph is acyclic by construction.

Usage:
    graph = Graph.empty()
    graph, ckpt = graph.append("CheckpointLoaderSimple", {"ckpt_name": "sd15.safetensors"})
    graph, pos = graph.append("CLIPTextEncode", {"text": "a cat", "clip": Reference(ckpt, 1)})
    document = graph.to_document()
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, NamedTuple

from .catalog import DEFAULT_CATALOG, NodeCatalog
from .config import get_settings
from .exceptions import ReferentialIntegrityError, UnsupportedOperationError

__all__ = [
    "Reference",
    "Node",
    "Graph",
]


class Reference(NamedTuple):
    """Output ``slot`` of node ``node_id``."""

    node_id: str
    slot: int = 0

    def to_json(self) -> list:
        return [self.node_id, self.slot]


def _freeze(inputs: Mapping[str, Any]) -> MappingProxyType:
    return MappingProxyType(dict(inputs))


@dataclass(frozen=True)
class Node:
    """A single operation instance in the graph."""

    id: str
    kind: str
    inputs: Mapping[str, Any] = field(default_factory=dict)
    title: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "inputs", _freeze(self.inputs))

    def references(self) -> Iterator[tuple[str, Reference]]:
        """Yield ``(port, reference)`` for every input bound to another node."""
        for port, value in self.inputs.items():
            if isinstance(value, Reference):
                yield port, value

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "inputs": {
                port: value.to_json() if isinstance(value, Reference) else value
                for port, value in self.inputs.items()
            },
            "class_type": self.kind,
        }
        if self.title:
            data["_meta"] = {"title": self.title}
        return data


class Graph(Mapping):
    """
    Immutable graph of nodes keyed by id.

    Args:
        catalog: Known operation kinds and their outputs (None disables checks)
        strict: Reject kinds missing from the catalog
        check_references: Check each appended node's references immediately
    """

    def __init__(
        self,
        nodes: Mapping[str, Node] | None = None,
        *,
        catalog: NodeCatalog | None = DEFAULT_CATALOG,
        strict: bool = True,
        check_references: bool = True,
        next_id: int = 1,
    ):
        self._nodes = MappingProxyType(dict(nodes or {}))
        self._catalog = catalog
        self._strict = strict
        self._check_references = check_references
        self._next_id = next_id

    @classmethod
    def empty(cls, catalog: NodeCatalog | None = DEFAULT_CATALOG) -> "Graph":
        """Create an empty graph configured from settings.build."""
        build = get_settings().build
        return cls(
            catalog=catalog,
            strict=build.strict_catalog,
            check_references=build.check_each_append,
        )

    # Mapping protocol

    def __getitem__(self, node_id: str) -> Node:
        return self._nodes[node_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return f"Graph({len(self._nodes)} nodes)"

    @property
    def catalog(self) -> NodeCatalog | None:
        return self._catalog

    # Building

    def append(
        self,
        kind: str,
        inputs: Mapping[str, Any],
        title: str | None = None,
    ) -> tuple["Graph", str]:
        """
        Append a node and return ``(new_graph, node_id)``.

        Inputs are stored exactly as given. Reference values bind a port to
        an existing node's output.

        Raises:
            UnsupportedOperationError: Kind not in a strict catalog
            ReferentialIntegrityError: An input references a missing node or slot
        """
        if self._strict and self._catalog is not None and kind not in self._catalog:
            raise UnsupportedOperationError(kind)

        node_id = str(self._next_id)
        node = Node(node_id, kind, inputs, title)

        if self._check_references:
            for port, ref in node.references():
                self._check_reference(node_id, port, ref)

        nodes = dict(self._nodes)
        nodes[node_id] = node
        graph = Graph(
            nodes,
            catalog=self._catalog,
            strict=self._strict,
            check_references=self._check_references,
            next_id=self._next_id + 1,
        )
        return graph, node_id

    def _check_reference(self, node_id: str, port: str, ref: Reference):
        target = self._nodes.get(ref.node_id)
        if target is None:
            raise ReferentialIntegrityError(node_id, ref.node_id, port)
        if self._catalog is not None:
            count = self._catalog.output_count(target.kind)
            if count is not None and not 0 <= ref.slot < count:
                raise ReferentialIntegrityError(
                    node_id,
                    ref.node_id,
                    port,
                    message=(
                        f"Node '{node_id}' input '{port}' references output {ref.slot} of "
                        f"'{ref.node_id}' ({target.kind} has {count} outputs)"
                    ),
                )

    def ref(self, node_id: str, slot: int = 0) -> Reference:
        """Reference output ``slot`` of an existing node."""
        if node_id not in self._nodes:
            raise KeyError(f"No node '{node_id}' in graph")
        return Reference(node_id, slot)

    # Queries

    def find(self, kind: str) -> list[Node]:
        """All nodes of the given kind, in insertion order."""
        return [node for node in self._nodes.values() if node.kind == kind]

    def to_document(self) -> dict[str, dict[str, Any]]:
        """The wire document: node id to ``{inputs, class_type, _meta}``."""
        return {node_id: node.to_dict() for node_id, node in self._nodes.items()}

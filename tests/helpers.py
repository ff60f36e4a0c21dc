"""Helpers for inspecting built documents."""

from comfy_recipes.graph import Reference


def link(node_id, slot=0):
    """Wire form of a reference, as found in documents."""
    return Reference(node_id, slot).to_json()


def nodes_of(document, kind):
    """(id, node) pairs of ``kind`` in document order."""
    return [(node_id, node) for node_id, node in document.items() if node["class_type"] == kind]


def image_source(document, node_id, port="image"):
    """Id of the node feeding ``port`` of ``node_id``."""
    return document[node_id]["inputs"][port][0]

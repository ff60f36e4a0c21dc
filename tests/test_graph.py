"""Tests for the immutable graph builder."""

import pytest

from comfy_recipes.catalog import DEFAULT_CATALOG, NodeCatalog
from comfy_recipes.exceptions import ReferentialIntegrityError, UnsupportedOperationError
from comfy_recipes.graph import Graph, Node, Reference


def _checkpoint_graph():
    graph = Graph()
    return graph.append("CheckpointLoaderSimple", {"ckpt_name": "sd15.safetensors"}, "Load Checkpoint")


class TestReference:
    """Reference values."""

    def test_default_slot(self):
        assert Reference("3") == ("3", 0)

    def test_to_json(self):
        assert Reference("3", 2).to_json() == ["3", 2]


class TestNode:
    """Single nodes."""

    def test_inputs_are_frozen(self):
        node = Node("1", "VAELoader", {"vae_name": "ae.safetensors"})
        with pytest.raises(TypeError):
            node.inputs["vae_name"] = "other"

    def test_inputs_copied(self):
        inputs = {"vae_name": "ae.safetensors"}
        node = Node("1", "VAELoader", inputs)
        inputs["vae_name"] = "changed"
        assert node.inputs["vae_name"] == "ae.safetensors"

    def test_references(self):
        node = Node("4", "VAEDecode", {"samples": Reference("3", 0), "vae": Reference("1", 2), "x": 1})
        assert dict(node.references()) == {"samples": Reference("3", 0), "vae": Reference("1", 2)}

    def test_to_dict_with_title(self):
        node = Node("4", "VAEDecode", {"samples": Reference("3")}, "VAE Decode")
        assert node.to_dict() == {
            "inputs": {"samples": ["3", 0]},
            "class_type": "VAEDecode",
            "_meta": {"title": "VAE Decode"},
        }

    def test_to_dict_without_title(self):
        assert "_meta" not in Node("1", "VAELoader", {}).to_dict()


class TestGraphAppend:
    """Appending nodes."""

    def test_ids_are_sequential(self):
        graph, first = _checkpoint_graph()
        graph, second = graph.append("CLIPTextEncode", {"text": "a", "clip": Reference(first, 1)})
        graph, third = graph.append("CLIPTextEncode", {"text": "b", "clip": Reference(first, 1)})
        assert (first, second, third) == ("1", "2", "3")
        assert list(graph) == ["1", "2", "3"]

    def test_append_does_not_mutate(self):
        empty = Graph()
        graph, node_id = empty.append("VAELoader", {"vae_name": "ae.safetensors"})
        assert len(empty) == 0
        assert len(graph) == 1
        assert node_id not in empty

    def test_branches_share_history(self):
        """Appending to the same graph twice gives independent branches."""
        base, ckpt = _checkpoint_graph()
        left, left_id = base.append("VAELoader", {"vae_name": "a"})
        right, right_id = base.append("VAELoader", {"vae_name": "b"})
        assert left_id == right_id == "2"
        assert left[left_id].inputs["vae_name"] == "a"
        assert right[right_id].inputs["vae_name"] == "b"
        assert len(base) == 1

    def test_missing_reference_rejected(self):
        graph, _ = _checkpoint_graph()
        with pytest.raises(ReferentialIntegrityError) as exc_info:
            graph.append("VAEDecode", {"samples": Reference("9"), "vae": Reference("1", 2)})
        error = exc_info.value
        assert error.from_node == "2"
        assert error.to_node == "9"
        assert error.port == "samples"

    def test_slot_out_of_range_rejected(self):
        graph, ckpt = _checkpoint_graph()
        with pytest.raises(ReferentialIntegrityError, match="has 3 outputs"):
            graph.append("VAEDecode", {"samples": Reference(ckpt, 5), "vae": Reference(ckpt, 2)})

    def test_self_reference_rejected(self):
        graph = Graph()
        with pytest.raises(ReferentialIntegrityError):
            graph.append("VAEDecode", {"samples": Reference("1")})

    def test_unknown_kind_rejected_when_strict(self):
        with pytest.raises(UnsupportedOperationError) as exc_info:
            Graph().append("NoSuchNode", {})
        assert exc_info.value.operation_kind == "NoSuchNode"

    def test_unknown_kind_allowed_when_not_strict(self):
        graph, node_id = Graph(strict=False).append("NoSuchNode", {})
        assert graph[node_id].kind == "NoSuchNode"

    def test_unknown_kind_slots_unchecked(self):
        graph, custom = Graph(strict=False).append("NoSuchNode", {})
        graph, decoded = graph.append("VAEDecode", {"samples": Reference(custom, 7)})
        assert graph[decoded].inputs["samples"] == Reference(custom, 7)

    def test_no_catalog(self):
        graph, node_id = Graph(catalog=None).append("Anything", {})
        graph, _ = graph.append("Other", {"x": Reference(node_id, 12)})
        assert len(graph) == 2

    def test_reference_check_can_be_deferred(self):
        graph, node_id = Graph(check_references=False).append("VAEDecode", {"samples": Reference("9")})
        assert graph[node_id].inputs["samples"] == Reference("9")

    def test_custom_catalog(self):
        catalog = NodeCatalog({"Source": ("IMAGE", "MASK"), "Sink": ()})
        graph, source = Graph(catalog=catalog).append("Source", {})
        graph, _ = graph.append("Sink", {"mask": Reference(source, 1)})
        assert graph.catalog is catalog

    def test_empty_reads_settings(self, settings_env):
        settings_env(BUILD__STRICT_CATALOG="false", BUILD__CHECK_EACH_APPEND="false")
        graph, node_id = Graph.empty().append("NoSuchNode", {"x": Reference("5")})
        assert graph[node_id].kind == "NoSuchNode"


class TestGraphQueries:
    """Reading a graph."""

    def test_ref(self):
        graph, ckpt = _checkpoint_graph()
        assert graph.ref(ckpt, 1) == Reference("1", 1)

    def test_ref_missing(self):
        with pytest.raises(KeyError):
            Graph().ref("1")

    def test_find(self):
        graph, ckpt = _checkpoint_graph()
        graph, _ = graph.append("CLIPTextEncode", {"text": "a", "clip": Reference(ckpt, 1)})
        graph, _ = graph.append("CLIPTextEncode", {"text": "b", "clip": Reference(ckpt, 1)})
        assert [n.inputs["text"] for n in graph.find("CLIPTextEncode")] == ["a", "b"]
        assert graph.find("SaveImage") == []

    def test_to_document(self):
        graph, ckpt = _checkpoint_graph()
        graph, _ = graph.append("CLIPTextEncode", {"text": "a", "clip": Reference(ckpt, 1)})
        assert graph.to_document() == {
            "1": {
                "inputs": {"ckpt_name": "sd15.safetensors"},
                "class_type": "CheckpointLoaderSimple",
                "_meta": {"title": "Load Checkpoint"},
            },
            "2": {"inputs": {"text": "a", "clip": ["1", 1]}, "class_type": "CLIPTextEncode"},
        }

    def test_default_catalog(self):
        assert Graph().catalog is DEFAULT_CATALOG

"""Tests for the command line interface."""

import json
from unittest.mock import patch

import pytest

from comfy_recipes import __version__
from comfy_recipes.__main__ import main
from comfy_recipes.catalog import NodeCatalog


def _build_args(*extra):
    return ["build", "sd_txt2img", "-s", "prompt=a cat", "-s", "seed=42", *extra]


class TestGeneral:
    """Top-level behaviour."""

    def test_version(self, capsys):
        assert main(["--version"]) == 0
        assert capsys.readouterr().out.strip() == f"comfy-recipes v{__version__}"

    def test_no_command(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_list(self, capsys):
        assert main(["list"]) == 0
        out = capsys.readouterr().out
        assert "sd_txt2img" in out
        assert "flux_depth" in out

    def test_describe(self, capsys):
        assert main(["describe", "qwen_txt2img"]) == 0
        info = json.loads(capsys.readouterr().out)
        assert info["id"] == "qwen_txt2img"

    def test_settings(self, capsys, settings_env):
        settings_env(BUILD__STRICT_CATALOG="false")
        assert main(["settings"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["build"]["strict_catalog"] is False
        assert set(data["logging"]) == {"level", "json_output"}

    def test_unknown_recipe(self, capsys):
        assert main(["describe", "nope"]) == 1
        err = capsys.readouterr().err
        assert "Error: Recipe not found" in err
        assert "Available recipes:" in err


class TestBuild:
    """The build command."""

    def test_prints_document(self, capsys):
        assert main(_build_args("-s", "width=512", "-s", "height=512")) == 0
        nodes = json.loads(capsys.readouterr().out)
        assert len(nodes) == 7
        assert nodes["2"]["inputs"]["text"] == "a cat"
        assert nodes["4"]["inputs"]["width"] == 512

    def test_params_json(self, capsys):
        params = json.dumps({"prompt": "a dog", "seed": 1, "upscale_enabled": True})
        assert main(["build", "sd_txt2img", "--params", params]) == 0
        nodes = json.loads(capsys.readouterr().out)
        assert any(n["class_type"] == "ImageScaleBy" for n in nodes.values())

    def test_params_file_and_override(self, capsys, tmp_path):
        params_file = tmp_path / "params.json"
        params_file.write_text(json.dumps({"prompt": "a dog", "seed": 1, "steps": 10}))
        assert main(["build", "sd_txt2img", "-p", f"@{params_file}", "-s", "steps=30", "--full"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["params"]["steps"] == 30
        assert data["params"]["prompt"] == "a dog"

    def test_preset(self, capsys):
        assert main(_build_args("--preset", "draft", "--full")) == 0
        assert json.loads(capsys.readouterr().out)["params"]["width"] == 512

    def test_output_file(self, capsys, tmp_path):
        target = tmp_path / "workflow.json"
        assert main(_build_args("-o", str(target))) == 0
        assert capsys.readouterr().out.startswith(f"Wrote 7 nodes to {target}")
        assert len(json.loads(target.read_text())) == 7

    def test_invalid_params(self, capsys):
        assert main(_build_args("-s", "width=100", "-s", "sampler_name=bogus")) == 2
        err = capsys.readouterr().err
        assert "Invalid parameters for sd_txt2img:" in err
        assert "width: 100 must be >= 256" in err
        assert "sampler_name: 'bogus'" in err

    def test_bad_json(self, capsys):
        assert main(["build", "sd_txt2img", "--params", "{not json"]) == 2
        assert "Error:" in capsys.readouterr().err

    def test_params_not_object(self, capsys):
        assert main(["build", "sd_txt2img", "--params", "[1, 2]"]) == 2

    def test_bad_set(self, capsys):
        assert main(["build", "sd_txt2img", "-s", "novalue"]) == 2


class TestCheck:
    """The check command."""

    def _write(self, tmp_path, data):
        path = tmp_path / "doc.json"
        path.write_text(json.dumps(data))
        return str(path)

    def test_built_document_ok(self, capsys, tmp_path):
        target = tmp_path / "workflow.json"
        main(_build_args("-o", str(target)))
        capsys.readouterr()
        assert main(["check", str(target)]) == 0
        assert capsys.readouterr().out.strip() == "OK: 7 nodes"

    def test_full_output_accepted(self, capsys, tmp_path):
        target = tmp_path / "full.json"
        main(_build_args("--full", "-o", str(target)))
        capsys.readouterr()
        assert main(["check", str(target)]) == 0

    def test_dangling(self, capsys, tmp_path):
        path = self._write(tmp_path, {"1": {"class_type": "SaveImage", "inputs": {"images": ["4", 0]}}})
        assert main(["check", path]) == 1
        assert "references non-existent node '4'" in capsys.readouterr().out

    def test_cycle(self, capsys, tmp_path):
        path = self._write(
            tmp_path,
            {
                "1": {"class_type": "VAEDecode", "inputs": {"samples": ["2", 0]}},
                "2": {"class_type": "VAEEncode", "inputs": {"pixels": ["1", 0]}},
            },
        )
        assert main(["check", path]) == 1
        assert "Workflow contains a cycle: 1 -> 2 -> 1" in capsys.readouterr().out

    def test_strict_unknown_kind(self, capsys, tmp_path):
        path = self._write(tmp_path, {"1": {"class_type": "Mystery", "inputs": {}}})
        assert main(["check", path]) == 0
        capsys.readouterr()
        assert main(["check", path, "--strict"]) == 1
        assert "unknown operation kind 'Mystery'" in capsys.readouterr().out

    def test_remote_catalog(self, capsys, tmp_path):
        path = self._write(tmp_path, {"1": {"class_type": "Mystery", "inputs": {}}})
        with patch("comfy_recipes.catalog.fetch_remote_catalog", return_value=NodeCatalog({"Mystery": ()})) as fetch:
            assert main(["check", path, "--strict", "--catalog-url", "http://h:8188"]) == 0
        fetch.assert_called_once_with("http://h:8188")

    def test_unreadable(self, capsys, tmp_path):
        assert main(["check", str(tmp_path / "missing.json")]) == 2

    def test_not_an_object(self, capsys, tmp_path):
        assert main(["check", self._write(tmp_path, [1, 2])]) == 2

    def test_malformed_node_reported(self, capsys, tmp_path):
        path = self._write(
            tmp_path,
            {"1": "garbage", "2": {"class_type": "VAEDecode", "inputs": {"samples": ["1", 0]}}},
        )
        assert main(["check", path, "--strict"]) == 1
        out = capsys.readouterr().out
        assert "references malformed node '1'" in out
        assert "Node '1' uses unknown operation kind 'None'" in out

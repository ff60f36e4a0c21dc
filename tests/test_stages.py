"""Tests for pipeline state, predicates and generic stages."""

import logging

import pytest

from comfy_recipes.exceptions import WorkflowError
from comfy_recipes.graph import Reference
from comfy_recipes.parameters import ValidatedParams
from comfy_recipes.stages import (
    PipelineState,
    Stage,
    StagePipeline,
    all_of,
    always,
    bind,
    detailer_stage,
    digital_look_stage,
    film_grain_stage,
    flag,
    image_effect_stage,
    lora_stage,
    model_upscale_stage,
    pixel_hires_stage,
    present,
    save_stage,
)


def _base_state(params):
    """Checkpoint handles plus a decoded image as the pointer."""
    state = PipelineState.start(params)
    state, ckpt = state.add("CheckpointLoaderSimple", {"ckpt_name": "a.safetensors"})
    state, pos = state.add("CLIPTextEncode", {"text": "a", "clip": Reference(ckpt, 1)})
    state, neg = state.add("CLIPTextEncode", {"text": "b", "clip": Reference(ckpt, 1)})
    state, latent = state.add("EmptyLatentImage", {"width": 512, "height": 512, "batch_size": 1})
    state, decoded = state.add(
        "VAEDecode", {"samples": Reference(latent, 0), "vae": Reference(ckpt, 2)}
    )
    return state.advance(
        Reference(decoded, 0),
        model=Reference(ckpt, 0),
        clip=Reference(ckpt, 1),
        vae=Reference(ckpt, 2),
        positive=Reference(pos, 0),
        negative=Reference(neg, 0),
    )


def _inputs(state, node_id):
    return state.graph[node_id].inputs


def _last_id(state):
    return list(state.graph)[-1]


class TestPipelineState:
    """The threaded state value."""

    def test_start_is_empty(self, simple_params):
        state = PipelineState.start(simple_params)
        assert len(state.graph) == 0
        assert state.pointer is None
        assert dict(state.handles) == {}
        assert state.terminal is None

    def test_add_returns_new_state(self, simple_params):
        state = PipelineState.start(simple_params)
        new_state, node_id = state.add("VAELoader", {"vae_name": "ae"})
        assert node_id == "1"
        assert len(state.graph) == 0
        assert len(new_state.graph) == 1

    def test_advance_merges_handles(self, simple_params):
        state = PipelineState.start(simple_params).advance(model=Reference("1"), clip=Reference("1", 1))
        state = state.advance(model=Reference("2"))
        assert state.handle("model") == Reference("2")
        assert state.handle("clip") == Reference("1", 1)

    def test_advance_keeps_pointer(self, simple_params):
        state = PipelineState.start(simple_params).advance(Reference("3"))
        assert state.advance(model=Reference("1")).pointer == Reference("3")

    def test_handles_immutable(self, simple_params):
        state = PipelineState.start(simple_params).advance(model=Reference("1"))
        with pytest.raises(TypeError):
            state.handles["model"] = Reference("2")

    def test_missing_handle(self, simple_params):
        with pytest.raises(WorkflowError, match="'vae' handle"):
            PipelineState.start(simple_params).handle("vae")

    def test_missing_image(self, simple_params):
        with pytest.raises(WorkflowError):
            PipelineState.start(simple_params).image()


class TestPredicates:
    """Stage enablement predicates."""

    def test_always(self):
        assert always(ValidatedParams({}))

    def test_flag(self):
        assert flag("on")(ValidatedParams({"on": True}))
        assert not flag("on")(ValidatedParams({"on": False}))
        assert not flag("on")(ValidatedParams({}))

    def test_present(self):
        assert present("name")(ValidatedParams({"name": "x"}))
        assert not present("name")(ValidatedParams({"name": ""}))
        assert not present("name")(ValidatedParams({"name": None}))
        assert not present("name")(ValidatedParams({}))

    def test_all_of(self):
        both = all_of(flag("a"), flag("b"))
        assert both(ValidatedParams({"a": True, "b": True}))
        assert not both(ValidatedParams({"a": False, "b": True}))
        assert "flag(a)" in both.__name__

    def test_bind(self):
        assert bind({"x": 1, "y": 2}, {"port": "y"}) == {"port": 2}


class TestStage:
    """Stage enablement and running."""

    def test_disabled_stage_returns_same_state(self, simple_params):
        state = PipelineState.start(simple_params)
        stage = Stage("never", lambda s: pytest.fail("should not run"), lambda p: False)
        assert stage.run(state) is state

    def test_enabled_stage_runs(self, simple_params):
        stage = Stage("vae", lambda s: s.add("VAELoader", {"vae_name": "ae"})[0])
        assert len(stage.run(PipelineState.start(simple_params)).graph) == 1

    def test_logs_skip_and_append(self, simple_params, caplog):
        caplog.set_level(logging.DEBUG, logger="comfy_recipes")
        state = PipelineState.start(simple_params)
        Stage("off", lambda s: s, lambda p: False).run(state)
        Stage("on", lambda s: s.add("VAELoader", {})[0]).run(state)
        messages = [r.getMessage() for r in caplog.records]
        assert "Stage 'off' skipped" in messages
        assert "Stage 'on' appended 1 node(s)" in messages


class TestStagePipeline:
    """Ordered stage sequences."""

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError):
            StagePipeline([Stage("a", lambda s: s), Stage("a", lambda s: s)])

    def test_names_and_enabled(self):
        pipeline = StagePipeline(
            [Stage("a", lambda s: s), Stage("b", lambda s: s, flag("b")), Stage("c", lambda s: s)]
        )
        assert pipeline.stage_names() == ["a", "b", "c"]
        assert pipeline.enabled_stages(ValidatedParams({"b": False})) == ["a", "c"]
        assert len(pipeline) == 3

    def test_last_enabled_stage_owns_pointer(self, simple_params):
        def image(name):
            def apply(state):
                state, node = state.add("LoadImage", {"image": name})
                return state.advance(Reference(node, 0))

            return apply

        pipeline = StagePipeline(
            [
                Stage("first", image("a.png")),
                Stage("second", image("b.png")),
                Stage("third", image("c.png"), lambda p: False),
            ]
        )
        state = pipeline.run(PipelineState.start(simple_params))
        assert state.graph[state.pointer.node_id].inputs["image"] == "b.png"


class TestLoraStage:
    """LoRA model adaptation."""

    def test_skipped_without_name(self, simple_params):
        state = _base_state(simple_params)
        assert lora_stage().run(state) is state

    def test_model_only(self):
        params = ValidatedParams({"lora_name": "style.safetensors", "lora_strength": 0.8})
        state = _base_state(params)
        model_before = state.handle("model")
        state = lora_stage().run(state)
        lora = _last_id(state)
        assert state.graph[lora].kind == "LoraLoaderModelOnly"
        assert dict(_inputs(state, lora)) == {
            "lora_name": "style.safetensors",
            "strength_model": 0.8,
            "model": model_before,
        }
        assert state.handle("model") == Reference(lora, 0)
        assert state.handle("clip") == Reference("1", 1)

    def test_with_clip(self):
        params = ValidatedParams({"lora_name": "style.safetensors", "lora_strength": 0.6})
        state = lora_stage(with_clip=True).run(_base_state(params))
        lora = _last_id(state)
        inputs = _inputs(state, lora)
        assert state.graph[lora].kind == "LoraLoader"
        assert inputs["strength_clip"] == 0.6
        assert inputs["clip"] == Reference("1", 1)
        assert state.handle("model") == Reference(lora, 0)
        assert state.handle("clip") == Reference(lora, 1)

    def test_fixed_name_always_on(self):
        params = ValidatedParams({"lora_strength": 1.0})
        stage = lora_stage(lora_name="fixed.safetensors")
        assert stage.enabled(params)
        state = stage.run(_base_state(params))
        assert _inputs(state, _last_id(state))["lora_name"] == "fixed.safetensors"


class TestImageStages:
    """Stages that advance the image pointer."""

    def test_model_upscale(self, simple_params):
        state = _base_state(simple_params)
        decoded = state.pointer
        state = model_upscale_stage().run(state)
        kinds = [state.graph[n].kind for n in list(state.graph)[-3:]]
        assert kinds == ["UpscaleModelLoader", "ImageUpscaleWithModel", "ImageScaleBy"]
        upscale_id = list(state.graph)[-2]
        assert _inputs(state, upscale_id)["image"] == decoded
        assert state.pointer == Reference(_last_id(state), 0)
        assert _inputs(state, _last_id(state))["scale_by"] == 0.5

    def test_model_upscale_disabled(self):
        params = ValidatedParams({"upscale_enabled": False})
        state = _base_state(params)
        assert model_upscale_stage().run(state) is state

    def test_pixel_hires(self):
        params = ValidatedParams(
            {
                "seed": 5,
                "cfg": 7.0,
                "sampler_name": "euler",
                "scheduler": "normal",
                "hires_enabled": True,
                "hires_scale": 1.5,
                "hires_steps": 12,
                "hires_denoise": 0.4,
            }
        )
        state = _base_state(params)
        decoded = state.pointer
        state = pixel_hires_stage().run(state)
        ids = list(state.graph)[-4:]
        assert [state.graph[n].kind for n in ids] == [
            "VAEEncode",
            "LatentUpscaleBy",
            "KSampler",
            "VAEDecode",
        ]
        assert _inputs(state, ids[0])["pixels"] == decoded
        sampler = _inputs(state, ids[2])
        assert sampler["seed"] == 5
        assert sampler["denoise"] == 0.4
        assert sampler["positive"] == state.handle("positive")
        assert sampler["latent_image"] == Reference(ids[1], 0)
        assert state.pointer == Reference(ids[3], 0)

    def test_image_effect(self):
        params = ValidatedParams({"factor": 0.3})
        state = _base_state(params)
        decoded = state.pointer
        stage = image_effect_stage(
            "sharpen", "FastLaplacianSharpen", fields={"factor": "factor"}, fixed={"strength": 1}, image_port="images"
        )
        state = stage.run(state)
        assert dict(_inputs(state, _last_id(state))) == {"factor": 0.3, "strength": 1, "images": decoded}

    def test_film_grain_uses_seed(self):
        params = ValidatedParams({"seed": 9, "film_grain_enabled": True, "amount": 0.2})
        state = film_grain_stage(fields={"amount": "amount"}).run(_base_state(params))
        node = state.graph[_last_id(state)]
        assert node.kind == "ProPostFilmGrain"
        assert node.inputs["seed"] == 9
        assert node.inputs["amount"] == 0.2

    def test_digital_look_disabled_by_default(self):
        params = ValidatedParams({"seed": 9})
        state = _base_state(params)
        assert digital_look_stage().run(state) is state

    def test_image_stage_without_image(self, simple_params):
        state = PipelineState.start(simple_params)
        with pytest.raises(WorkflowError):
            model_upscale_stage().run(state)


class TestDetailerStage:
    """FaceDetailer stages."""

    def _params(self):
        return ValidatedParams({"seed": 3, "on": True, "denoise_value": 0.4})

    def test_bbox_only(self):
        state = _base_state(self._params())
        decoded = state.pointer
        stage = detailer_stage(
            "face",
            detector_model="bbox/face.pt",
            when=flag("on"),
            fields={"denoise": "denoise_value"},
            fixed={"steps": 20},
        )
        state = stage.run(state)
        ids = list(state.graph)[-2:]
        assert [state.graph[n].kind for n in ids] == ["UltralyticsDetectorProvider", "FaceDetailer"]
        inputs = _inputs(state, ids[1])
        assert inputs["seed"] == 3
        assert inputs["denoise"] == 0.4
        assert inputs["steps"] == 20
        assert inputs["image"] == decoded
        assert inputs["bbox_detector"] == Reference(ids[0], 0)
        assert "sam_model_opt" not in inputs
        assert state.pointer == Reference(ids[1], 0)

    def test_with_sam(self):
        stage = detailer_stage(
            "eye",
            detector_model="bbox/eyes.pt",
            sam_model="sam.pth",
            when=flag("on"),
            fields={},
            fixed={},
        )
        state = stage.run(_base_state(self._params()))
        ids = list(state.graph)[-3:]
        assert [state.graph[n].kind for n in ids] == [
            "UltralyticsDetectorProvider",
            "SAMLoader",
            "FaceDetailer",
        ]
        inputs = _inputs(state, ids[2])
        assert inputs["sam_model_opt"] == Reference(ids[1], 0)
        assert inputs["segm_detector_opt"] == Reference(ids[0], 1)

    def test_detector_titles(self):
        eye = detailer_stage(
            "eye", detector_model="bbox/eyes.pt", when=flag("on"), fields={}, fixed={}, title="Eye Detailer"
        ).run(_base_state(self._params()))
        detector_id, detailer_id = list(eye.graph)[-2:]
        assert eye.graph[detector_id].title == "Eye Detector Provider"
        assert eye.graph[detailer_id].title == "Eye Detailer"

        named = detailer_stage(
            "face",
            detector_model="bbox/face.pt",
            when=flag("on"),
            fields={},
            fixed={},
            detector_title="Face Detector Provider (YOLOv11)",
        ).run(_base_state(self._params()))
        assert named.graph[list(named.graph)[-2]].title == "Face Detector Provider (YOLOv11)"


class TestSaveStage:
    """The terminal save node."""

    def test_binds_pointer(self, simple_params):
        state = _base_state(simple_params)
        decoded = state.pointer
        state = save_stage("prefix").run(state)
        save = state.graph[state.terminal]
        assert save.kind == "SaveImage"
        assert dict(save.inputs) == {"filename_prefix": "prefix", "images": decoded}
        assert save.title == "Save Image"

    def test_default_prefix_from_settings(self, simple_params, settings_env):
        settings_env(BUILD__DEFAULT_FILENAME_PREFIX="custom")
        state = save_stage().run(_base_state(simple_params))
        assert state.graph[state.terminal].inputs["filename_prefix"] == "custom"

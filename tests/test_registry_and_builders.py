"""Tests for the model registry and provider request builders."""

from types import SimpleNamespace

import pytest

from facet.models.model_config import AIModelConfig
from facet.services.exceptions import PermanentError, UnknownModelError
from facet.services.providers.registry import (
    MARKET_SUBMIT_ENDPOINT,
    ModelConfig,
    ModelRegistry,
    load_registry,
)
from facet.services.providers.request_builders import (
    FLUX_DEFAULT_PROMPT,
    GHIBLI_PREFIX,
    build_callback_url,
    build_request,
)


def make_job(**values):
    defaults = {
        "ai_model": "flux-kontext-pro",
        "prompt": "Polish the ring",
        "input_url": "https://cdn/in.jpg",
        "input_url_2": None,
        "settings": {"aspect_ratio": "4:5"},
    }
    defaults.update(values)
    return SimpleNamespace(**defaults)


class TestModelRegistry:
    def test_builtin_models(self):
        registry = ModelRegistry.default()

        assert "flux-kontext-pro" in registry
        assert registry.require("gpt-4o-image").max_processing_time_sec == 900
        assert registry.require("flux-kontext-pro").max_processing_time_sec == 600

    def test_require_unknown_model(self):
        with pytest.raises(UnknownModelError, match="Model not found or inactive: dall-e"):
            ModelRegistry.default().require("dall-e")

    def test_rows_override_and_disable_builtins(self):
        rows = [
            AIModelConfig(
                id="flux-kontext-pro",
                submit_endpoint="https://override/submit",
                status_endpoint="https://override/status",
                request_builder="flux_kontext",
                max_processing_time_sec=120,
                token_cost=5,
            ),
            AIModelConfig(
                id="ghibli",
                submit_endpoint=MARKET_SUBMIT_ENDPOINT,
                status_endpoint="https://x",
                request_builder="market_ghibli",
                is_active=False,
            ),
        ]

        registry = ModelRegistry.from_rows(rows)

        assert registry.require("flux-kontext-pro").submit_endpoint == "https://override/submit"
        assert registry.require("flux-kontext-pro").max_processing_time_sec == 120
        assert registry.get("ghibli") is None
        assert "nano-banana" in registry

    @pytest.mark.asyncio
    async def test_load_registry_reads_overrides(self, seed, uow_factory):
        await seed.model_config(
            id="house-model",
            submit_endpoint="https://house/submit",
            status_endpoint="https://house/status",
            request_builder="market_single",
            result_url_paths=["data.url"],
        )

        async with await uow_factory() as uow:
            registry = await load_registry(uow)

        assert registry.require("house-model").result_url_paths == ["data.url"]
        assert "flux-kontext-pro" in registry


class TestRequestBuilders:
    def test_flux_body(self):
        config = ModelRegistry.default().require("flux-kontext-pro")

        body = build_request(config, make_job(), "https://api/webhooks/ai?token=t")

        assert body == {
            "model": "flux-kontext-pro",
            "outputFormat": "png",
            "callbackUrl": "https://api/webhooks/ai?token=t",
            "prompt": "Polish the ring",
            "inputImage": "https://cdn/in.jpg",
            "aspectRatio": "4:5",
        }

    def test_flux_default_prompt_and_aspect_ratio(self):
        config = ModelRegistry.default().require("flux-kontext-pro")

        body = build_request(config, make_job(prompt=None, settings=None))

        assert body["prompt"] == FLUX_DEFAULT_PROMPT
        assert body["aspectRatio"] == "1:1"
        assert "callbackUrl" not in body

    def test_market_image_urls(self):
        config = ModelRegistry.default().require("nano-banana")

        body = build_request(config, make_job(ai_model="nano-banana"))

        assert body["model"] == "google/nano-banana-edit"
        assert body["input"] == {
            "output_format": "png",
            "prompt": "Polish the ring",
            "image_urls": ["https://cdn/in.jpg"],
            "image_size": "4:5",
        }

    def test_market_edit_includes_second_image(self):
        config = ModelRegistry.default().require("seedream-v4-edit")

        body = build_request(config, make_job(input_url_2="https://cdn/in2.jpg"))

        assert body["input"]["image_input"] == ["https://cdn/in.jpg", "https://cdn/in2.jpg"]

    def test_ghibli_prefix(self):
        config = ModelRegistry.default().require("ghibli")

        body = build_request(config, make_job(prompt="a ring"))

        assert body["input"]["prompt"] == f"{GHIBLI_PREFIX}a ring"

    def test_template_is_not_mutated(self):
        config = ModelRegistry.default().require("nano-banana")

        build_request(config, make_job())

        assert config.request_template == {
            "model": "google/nano-banana-edit",
            "input": {"output_format": "png"},
        }

    def test_callback_omitted_when_unsupported(self):
        config = ModelConfig(
            id="no-callback",
            submit_endpoint="https://s",
            status_endpoint="https://t",
            request_builder="gpt4o_image",
            supports_callback=False,
        )

        body = build_request(config, make_job(), "https://api/webhooks/ai?token=t")

        assert "callbackUrl" not in body

    def test_unknown_builder(self):
        config = ModelConfig(
            id="broken", submit_endpoint="s", status_endpoint="t", request_builder="nope"
        )

        with pytest.raises(PermanentError, match="Unknown request builder: nope"):
            build_request(config, make_job())

    def test_callback_url(self):
        assert build_callback_url("https://api/webhooks/ai", "abc") == "https://api/webhooks/ai?token=abc"

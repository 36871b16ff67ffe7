"""Tests for fluxgallery.core.orchestrator — generation orchestration.

The provider is replaced by the ``fake_provider`` fixture so no network call
is ever made.  Tests cover:

- Parameter merging and the payload sent to the provider.
- Validation before any provider call.
- Verbatim forwarding of provider failures.
- Caller-facing prompt bounds.
"""

from __future__ import annotations

import pytest

from fluxgallery.core.errors import ProviderError, ValidationError
from fluxgallery.core.orchestrator import GenerationOrchestrator, validate_prompt
from fluxgallery.core.profiles import ProviderProfile, default_registry


@pytest.fixture
def flux_pro() -> ProviderProfile:
    return default_registry().resolve("flux-pro")


class TestGenerate:
    """Test GenerationOrchestrator.generate()."""

    @pytest.mark.asyncio
    async def test_invokes_provider_with_merged_payload(self, fake_provider, flux_pro):
        """The provider receives the profile defaults plus the prompt."""
        orchestrator = GenerationOrchestrator(fake_provider)
        result = await orchestrator.generate("A futuristic cityscape at sunset", flux_pro)

        assert result.url == fake_provider.url
        assert len(fake_provider.calls) == 1
        model_id, payload = fake_provider.calls[0]
        assert model_id == "black-forest-labs/flux-1.1-pro"
        assert payload == {
            "aspect_ratio": "1:1",
            "output_format": "webp",
            "output_quality": 80,
            "safety_tolerance": 2,
            "prompt_upsampling": True,
            "prompt": "A futuristic cityscape at sunset",
        }

    @pytest.mark.asyncio
    async def test_result_parameters_exclude_prompt(self, fake_provider, flux_pro):
        """The snapshot stored with the result equals the profile defaults."""
        result = await GenerationOrchestrator(fake_provider).generate("A red fox", flux_pro)
        assert result.parameters == flux_pro.default_parameters.as_payload()
        assert result.model == flux_pro.canonical_model_id
        assert result.prompt == "A red fox"

    @pytest.mark.asyncio
    async def test_overrides_are_applied(self, fake_provider, flux_pro):
        result = await GenerationOrchestrator(fake_provider).generate(
            "A red fox", flux_pro, {"aspect_ratio": "3:2"}
        )
        assert fake_provider.calls[0][1]["aspect_ratio"] == "3:2"
        assert result.parameters["aspect_ratio"] == "3:2"

    @pytest.mark.asyncio
    async def test_empty_prompt_fails_before_provider_call(self, fake_provider, flux_pro):
        with pytest.raises(ValidationError, match="Prompt is required"):
            await GenerationOrchestrator(fake_provider).generate("", flux_pro)
        assert fake_provider.calls == []

    @pytest.mark.asyncio
    async def test_missing_model_fails_before_provider_call(self, fake_provider):
        with pytest.raises(ValidationError, match="Model is required"):
            await GenerationOrchestrator(fake_provider).generate("A red fox", None)
        assert fake_provider.calls == []

    @pytest.mark.asyncio
    async def test_invalid_override_fails_before_provider_call(self, fake_provider, flux_pro):
        with pytest.raises(ValidationError):
            await GenerationOrchestrator(fake_provider).generate(
                "A red fox", flux_pro, {"output_format": "gif"}
            )
        assert fake_provider.calls == []

    @pytest.mark.asyncio
    async def test_provider_error_forwarded_verbatim(self, failing_provider, flux_pro):
        """ProviderError keeps its message and detail and is not retried."""
        with pytest.raises(ProviderError) as exc_info:
            await GenerationOrchestrator(failing_provider).generate("A red fox", flux_pro)
        assert exc_info.value.message == "Invalid token"
        assert exc_info.value.detail == {"status": 401, "detail": "Invalid token"}
        assert len(failing_provider.calls) == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_wrapped(self, fake_provider, flux_pro):
        fake_provider.error = RuntimeError("connection reset")
        with pytest.raises(ProviderError, match="connection reset"):
            await GenerationOrchestrator(fake_provider).generate("A red fox", flux_pro)

    @pytest.mark.asyncio
    async def test_empty_locator_is_provider_error(self, fake_provider, flux_pro):
        """A provider must never produce a silent empty result."""
        fake_provider.url = ""
        with pytest.raises(ProviderError):
            await GenerationOrchestrator(fake_provider).generate("A red fox", flux_pro)


class TestValidatePrompt:
    """Test the caller-facing prompt bounds."""

    @pytest.mark.parametrize("prompt", ["Hello", "x" * 75, "  A red fox  "])
    def test_accepts_bounds(self, prompt):
        assert validate_prompt(prompt) == prompt.strip()

    @pytest.mark.parametrize("prompt", [None, "", "   "])
    def test_missing_prompt(self, prompt):
        with pytest.raises(ValidationError, match="Prompt is required"):
            validate_prompt(prompt)

    @pytest.mark.parametrize("prompt", ["Hey", "x" * 76])
    def test_rejects_out_of_bounds(self, prompt):
        with pytest.raises(ValidationError, match="between 5 and 75"):
            validate_prompt(prompt)

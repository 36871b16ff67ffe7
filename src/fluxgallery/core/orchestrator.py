"""Generation orchestration: validate, merge parameters, invoke the provider.

The orchestrator normalizes a provider-specific generation call.  It never
persists anything; saving the result is the caller's responsibility via
:class:`~fluxgallery.core.artifact_store.ArtifactStore`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .errors import ProviderError, ValidationError
from .profiles import ProviderProfile
from .provider import GenerationProvider

logger = logging.getLogger(__name__)

PROMPT_MIN_LENGTH = 5
PROMPT_MAX_LENGTH = 75


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of a successful generation.

    Attributes:
        url: Locator of the generated content returned by the provider.
        prompt: Prompt the content was generated from.
        model: Canonical model id that produced it.
        parameters: Snapshot of the parameter set used, excluding the prompt.
    """

    url: str
    prompt: str
    model: str
    parameters: dict[str, Any] = field(default_factory=dict)


def validate_prompt(prompt: str | None) -> str:
    """Enforce the caller-facing prompt bounds.

    Args:
        prompt: Raw prompt from the client.

    Returns:
        The prompt with surrounding whitespace removed.

    Raises:
        ValidationError: If the prompt is missing or not 5-75 characters.
    """
    if prompt is None or not prompt.strip():
        raise ValidationError("Prompt is required")
    prompt = prompt.strip()
    if not PROMPT_MIN_LENGTH <= len(prompt) <= PROMPT_MAX_LENGTH:
        raise ValidationError(
            f"Prompt must be between {PROMPT_MIN_LENGTH} and {PROMPT_MAX_LENGTH} characters"
        )
    return prompt


class GenerationOrchestrator:
    """Turn a prompt and a provider profile into a generated artifact locator.

    Args:
        provider: The external generation capability.
    """

    def __init__(self, provider: GenerationProvider) -> None:
        self.provider = provider

    async def generate(
        self,
        prompt: str,
        profile: ProviderProfile,
        parameters: dict[str, Any] | None = None,
    ) -> GenerationResult:
        """Generate content for ``prompt`` with ``profile``.

        The payload is the profile's default parameters, overlaid with any
        ``parameters`` overrides, overlaid with ``{"prompt": prompt}``.
        Exactly one provider call is made and it is never retried.

        Raises:
            ValidationError: If the prompt or model id is missing, or the
                overrides are invalid.  Raised before any provider call.
            ProviderError: If the provider fails or returns no locator.
        """
        if not prompt:
            raise ValidationError("Prompt is required")
        if profile is None or not profile.canonical_model_id:
            raise ValidationError("Model is required")

        record = profile.merge(parameters)
        payload = profile.payload(prompt, record)
        model_id = profile.canonical_model_id

        logger.info(f"Starting image generation with {model_id}")
        logger.debug(f"Generation payload: {payload}")

        try:
            url = await self.provider.invoke(model_id, payload)
        except ProviderError as e:
            logger.error(f"Provider error from {model_id}: {e.message} ({e.detail!r})")
            raise
        except Exception as e:
            logger.error(f"Unexpected provider failure from {model_id}: {e}", exc_info=True)
            raise ProviderError(str(e) or type(e).__name__) from e

        if not url:
            raise ProviderError("Provider returned an empty result", detail={"model": model_id})

        logger.info(f"Generation successful: {url}")
        return GenerationResult(
            url=url,
            prompt=prompt,
            model=model_id,
            parameters=record.as_payload(),
        )

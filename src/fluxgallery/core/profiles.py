"""Provider profiles and the registry that resolves them.

A provider profile bundles a canonical generation-model identifier with the
default parameter set that model is called with.  Parameter sets are a closed
tagged union of typed records, one per supported model, so overlaying request
overrides is a validated structural merge rather than an arbitrary dict spread.

Built-in Profiles
-----------------
==================  ========================================  ======================
Key                 Canonical model id                        Parameter record
==================  ========================================  ======================
``flux-pro``        ``black-forest-labs/flux-1.1-pro``        FluxProParameters
``flux-pro-ultra``  ``black-forest-labs/flux-1.1-pro-ultra``  FluxProUltraParameters
``ideogram``        ``ideogram-ai/ideogram-v2``               IdeogramParameters
==================  ========================================  ======================

Usage Example
-------------
    >>> from fluxgallery.core.profiles import default_registry
    >>> registry = default_registry()
    >>> profile = registry.resolve("flux-pro")
    >>> profile.payload("A futuristic cityscape at sunset")["output_format"]
    'webp'
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .errors import UnknownProfileError, ValidationError

logger = logging.getLogger(__name__)


class _ParameterRecord(BaseModel):
    """Shared configuration for the typed parameter records."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    def as_payload(self) -> dict[str, Any]:
        """Return the provider-facing mapping (without the union tag)."""
        return self.model_dump(exclude={"kind"})


class FluxProParameters(_ParameterRecord):
    """Parameters accepted by ``black-forest-labs/flux-1.1-pro``."""

    kind: Literal["flux-pro"] = "flux-pro"
    aspect_ratio: str = "1:1"
    output_format: Literal["webp", "jpg", "png"] = "webp"
    output_quality: int = Field(default=80, ge=0, le=100)
    safety_tolerance: int = Field(default=2, ge=1, le=6)
    prompt_upsampling: bool = True


class FluxProUltraParameters(_ParameterRecord):
    """Parameters accepted by ``black-forest-labs/flux-1.1-pro-ultra``."""

    kind: Literal["flux-pro-ultra"] = "flux-pro-ultra"
    aspect_ratio: str = "1:1"
    image_prompt_strength: float = Field(default=0.1, ge=0.0, le=1.0)
    output_format: Literal["webp", "jpg", "png"] = "jpg"
    raw: bool = False
    safety_tolerance: int = Field(default=2, ge=1, le=6)


class IdeogramParameters(_ParameterRecord):
    """Parameters accepted by ``ideogram-ai/ideogram-v2``."""

    kind: Literal["ideogram"] = "ideogram"
    resolution: str = "None"
    style_type: str = "None"
    aspect_ratio: str = "1:1"
    magic_prompt_option: Literal["Auto", "On", "Off"] = "Auto"


ProfileParameters = Annotated[
    Union[FluxProParameters, FluxProUltraParameters, IdeogramParameters],
    Field(discriminator="kind"),
]


class ProviderProfile(BaseModel):
    """Named configuration of a provider model and its default parameters.

    Attributes:
        key: Short profile key used by clients (e.g. ``"flux-pro"``).
        label: Human-readable name.
        canonical_model_id: Provider model identifier passed to the provider.
        default_parameters: Typed default parameter record.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    canonical_model_id: str
    default_parameters: ProfileParameters

    def merge(self, overrides: dict[str, Any] | None = None) -> _ParameterRecord:
        """Overlay request overrides onto the default parameter record.

        ``prompt`` is never accepted as an override (the prompt always wins),
        and the union tag cannot be changed.

        Args:
            overrides: Partial parameter mapping from the request.

        Returns:
            A new, validated parameter record of the profile's type.

        Raises:
            ValidationError: If an override names an unknown parameter or has
                an invalid value.
        """
        if not overrides:
            return self.default_parameters

        cleaned = {k: v for k, v in overrides.items() if k not in ("prompt", "kind")}
        record_cls = type(self.default_parameters)
        try:
            return record_cls.model_validate({**self.default_parameters.model_dump(), **cleaned})
        except pydantic.ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ValidationError(f"Invalid parameters for {self.key}: {problems}") from e

    def payload(self, prompt: str, parameters: _ParameterRecord | None = None) -> dict[str, Any]:
        """Build the provider input mapping; ``prompt`` overrides any parameter."""
        record = parameters if parameters is not None else self.default_parameters
        return {**record.as_payload(), "prompt": prompt}

    def describe(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "model": self.canonical_model_id,
            "parameters": self.default_parameters.as_payload(),
        }


class ProfileRegistry:
    """Read-only catalog of provider profiles.

    Profiles are looked up by key, or by canonical model id so that clients
    sending the provider identifier directly still resolve.
    """

    def __init__(self, profiles: list[ProviderProfile] | None = None) -> None:
        self._profiles: dict[str, ProviderProfile] = {}
        for profile in profiles or []:
            self.register(profile)

    def register(self, profile: ProviderProfile) -> None:
        """Register a profile under its key.

        Args:
            profile: Profile to register
        """
        if profile.key in self._profiles:
            logger.warning(f"Provider profile '{profile.key}' is already registered, overwriting")
        self._profiles[profile.key] = profile
        logger.debug(f"Registered provider profile: {profile.key} -> {profile.canonical_model_id}")

    def resolve(self, key: str) -> ProviderProfile:
        """Return the profile for a key or canonical model id.

        Raises:
            UnknownProfileError: If nothing matches.
        """
        profile = self._profiles.get(key)
        if profile is not None:
            return profile
        for candidate in self._profiles.values():
            if candidate.canonical_model_id == key:
                return candidate
        raise UnknownProfileError(key, self.list_available())

    def list_available(self) -> list[str]:
        return list(self._profiles)

    def describe(self) -> list[dict[str, Any]]:
        return [profile.describe() for profile in self._profiles.values()]

    def __contains__(self, key: object) -> bool:
        return key in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)


BUILTIN_PROFILES: tuple[ProviderProfile, ...] = (
    ProviderProfile(
        key="flux-pro",
        label="Flux Pro",
        canonical_model_id="black-forest-labs/flux-1.1-pro",
        default_parameters=FluxProParameters(),
    ),
    ProviderProfile(
        key="flux-pro-ultra",
        label="Flux Pro Ultra",
        canonical_model_id="black-forest-labs/flux-1.1-pro-ultra",
        default_parameters=FluxProUltraParameters(),
    ),
    ProviderProfile(
        key="ideogram",
        label="Ideogram v2",
        canonical_model_id="ideogram-ai/ideogram-v2",
        default_parameters=IdeogramParameters(),
    ),
)


def default_registry() -> ProfileRegistry:
    """Build a registry holding the built-in profiles."""
    return ProfileRegistry(list(BUILTIN_PROFILES))

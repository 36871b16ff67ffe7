"""Pydantic request models for the Flux Gallery API.

Models
------
GenerateRequest
    Payload for ``POST /generate``.  Every field is optional at the schema
    level so that a missing prompt or model produces the documented plain
    ``400`` message instead of FastAPI's generic ``422`` validation body.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class GenerateRequest(BaseModel):
    """Request body for the ``POST /generate`` endpoint.

    Attributes:
        prompt: Text prompt, 5-75 characters.
        model: Profile key (``"flux-pro"``) or canonical model id
            (``"black-forest-labs/flux-1.1-pro"``).
        parameters: Optional overrides for the profile's default parameters.
    """

    prompt: str | None = Field(
        default=None,
        description="Text prompt (5-75 characters).",
    )
    model: str | None = Field(
        default=None,
        description="Profile key or canonical provider model id.",
    )
    parameters: dict[str, Any] | None = Field(
        default=None,
        description="Overrides for the profile's default parameters.",
    )

"""Flux Gallery — FastAPI Application.

This module builds the FastAPI application, registers its routes and error
handlers, and provides the ``main()`` CLI function that launches uvicorn.

Architecture
------------
- **Configuration** comes from :class:`~fluxgallery.core.config.GalleryConfig`
  (``FLUXGALLERY_*`` environment variables and ``.env``).
- **Services** are wired once by :func:`create_app` into a
  :class:`~fluxgallery.core.context.GalleryContext` kept on ``app.state``.
  There are no module-level clients.
- **Image generation** is delegated to the configured provider through
  :class:`~fluxgallery.core.orchestrator.GenerationOrchestrator`.
- **Persistence** writes the artifact and a metadata sidecar into the owner's
  namespace.  Saving is best-effort: a failed save never fails generation.
- **Gallery listings** are reconstructed from storage on every request.
- **Stored files** (local backend only) are served by ``StaticFiles`` under
  ``files_mount``.

Endpoints
---------
========  ==================================  ==============================
Method    Path                                Purpose
========  ==================================  ==============================
POST      ``/generate``                       Generate (and optionally save)
GET       ``/api/profiles``                   Provider profiles and defaults
GET       ``/api/users/{owner}/images``       Reconstructed gallery
GET       ``/api/users/{owner}/stats``        Gallery statistics
GET       ``/api/users/{owner}/orphans``      Sidecars without artifacts
DELETE    ``/api/users/{owner}/orphans``      Prune stale orphaned sidecars
========  ==================================  ==============================

The owner identity comes from the external identity provider; this service
only namespaces by it.  ``POST /generate`` saves the result when the
``X-Owner-Id`` header is present.

Usage
-----
CLI (installed entry point)::

    fluxgallery

Direct invocation::

    python -m fluxgallery.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from fluxgallery import __version__
from fluxgallery.api.gallery_store import filter_gallery_entries, paginate_gallery_entries
from fluxgallery.api.models import GenerateRequest
from fluxgallery.core.config import GalleryConfig
from fluxgallery.core.context import GalleryContext, build_context
from fluxgallery.core.errors import GalleryListError, ProviderError, ValidationError
from fluxgallery.core.gallery import summarize
from fluxgallery.core.object_store import ObjectStore
from fluxgallery.core.orchestrator import validate_prompt
from fluxgallery.core.provider import GenerationProvider

logger = logging.getLogger(__name__)

NO_DETAILS = "No additional details available"


# ---------------------------------------------------------------------------
# Error handlers: map the core taxonomy onto HTTP responses.
# ---------------------------------------------------------------------------


async def _validation_error_handler(request: Request, exc: ValidationError) -> PlainTextResponse:
    """Return a plain-text 400 carrying the validation message."""
    return PlainTextResponse(str(exc), status_code=400)


async def _provider_error_handler(request: Request, exc: ProviderError) -> JSONResponse:
    """Return a 500 with the upstream message and detail, forwarded verbatim."""
    return JSONResponse(
        {
            "error": exc.message,
            "details": exc.detail if exc.detail is not None else NO_DETAILS,
        },
        status_code=500,
    )


async def _gallery_list_error_handler(request: Request, exc: GalleryListError) -> JSONResponse:
    logger.error(f"Error fetching images: {exc}")
    return JSONResponse({"error": "Failed to load images. Please try again."}, status_code=500)


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


def _context(request: Request) -> GalleryContext:
    return request.app.state.context


async def generate(
    req: GenerateRequest,
    request: Request,
    x_owner_id: str | None = Header(default=None),
) -> dict:
    """Generate an image with the requested provider profile.

    This endpoint:

    1. Validates the prompt and model (plain-text 400 on failure).
    2. Resolves the model to a provider profile.
    3. Invokes the provider once with the merged parameters.
    4. If ``X-Owner-Id`` is given, saves the artifact and its metadata.
       A failed save is logged and reported as ``saved: false``.

    Args:
        req: Validated :class:`GenerateRequest` payload.
        request: Incoming request (used to reach the application context).
        x_owner_id: Owner namespace to save the result under.

    Returns:
        Dictionary with ``url`` and, when an owner was given, ``saved`` and
        ``artifact_id``.

    Raises:
        ValidationError: Missing prompt/model, bad prompt length, unknown
            model, or invalid parameter overrides (400).
        ProviderError: The provider failed (500).
    """
    ctx = _context(request)

    prompt = validate_prompt(req.prompt)
    if not req.model:
        raise ValidationError("Model is required")
    profile = ctx.registry.resolve(req.model)

    result = await ctx.orchestrator.generate(prompt, profile, req.parameters)
    response: dict = {"url": result.url}

    if x_owner_id is not None:
        saved = await ctx.save_generation(x_owner_id, result)
        response["saved"] = saved is not None
        response["artifact_id"] = saved.artifact_id if saved else None

    return response


async def list_profiles(request: Request) -> dict:
    """Return the registered provider profiles with their default parameters."""
    return {
        "version": __version__,
        "profiles": _context(request).registry.describe(),
    }


async def get_gallery(
    owner_id: str,
    request: Request,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=50, ge=1, le=500),
    model: str | None = None,
    with_metadata_only: bool = False,
) -> dict:
    """Return the owner's reconstructed gallery, newest first.

    Args:
        owner_id: Owner namespace.
        request: Incoming request.
        page: Page number (1-indexed).
        per_page: Number of images per page.
        model: If provided, return only images from this model.
        with_metadata_only: If ``True``, skip images without stored metadata.

    Returns:
        Dictionary with keys ``total``, ``page``, ``per_page``, ``pages``,
        and ``images``.
    """
    entries = await _context(request).gallery.reconstruct(owner_id)
    entries = filter_gallery_entries(entries, model=model, with_metadata_only=with_metadata_only)
    return paginate_gallery_entries(entries, page, per_page)


async def get_stats(owner_id: str, request: Request) -> dict:
    """Return gallery statistics for the owner."""
    entries = await _context(request).gallery.reconstruct(owner_id)
    return summarize(entries)


async def list_orphans(owner_id: str, request: Request) -> dict:
    """Return ids of metadata sidecars that have no matching artifact."""
    orphans = await _context(request).artifacts.find_orphan_metadata(owner_id)
    return {"orphans": orphans}


async def prune_orphans(
    owner_id: str,
    request: Request,
    grace_seconds: int | None = Query(default=None, ge=0),
) -> dict:
    """Delete orphaned sidecars older than the grace window.

    Args:
        owner_id: Owner namespace.
        request: Incoming request.
        grace_seconds: Overrides ``orphan_grace_seconds`` from configuration.

    Returns:
        Dictionary with the ``removed`` ids.
    """
    ctx = _context(request)
    grace = ctx.config.orphan_grace_seconds if grace_seconds is None else grace_seconds
    removed = await ctx.artifacts.prune_orphan_metadata(owner_id, grace)
    return {"removed": removed}


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Log application startup and shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    config: GalleryConfig = app.state.context.config
    logger.info(
        f"Flux Gallery {__version__} started "
        f"(storage: {config.storage_backend}, profiles: {len(app.state.context.registry)})"
    )

    yield  # Application runs here.

    logger.info("Flux Gallery shut down.")


def create_app(
    config: GalleryConfig | None = None,
    *,
    provider: GenerationProvider | None = None,
    object_store: ObjectStore | None = None,
) -> FastAPI:
    """Build the FastAPI application and its service context.

    Args:
        config: Configuration; loaded from the environment when omitted.
        provider: Generation provider override (tests use a fake).
        object_store: Object store override.

    Returns:
        The configured application.
    """
    config = config or GalleryConfig()
    context = build_context(config, provider=provider, object_store=object_store)

    app = FastAPI(
        title="Flux Gallery",
        description="Image generation with a persistent per-user gallery.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.context = context

    # Allow cross-origin requests so the UI can be served from a different
    # origin.  Restrict ``allow_origins`` in production deployments.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ValidationError, _validation_error_handler)
    app.add_exception_handler(ProviderError, _provider_error_handler)
    app.add_exception_handler(GalleryListError, _gallery_list_error_handler)

    app.add_api_route("/generate", generate, methods=["POST"])
    app.add_api_route("/api/profiles", list_profiles, methods=["GET"])
    app.add_api_route("/api/users/{owner_id}/images", get_gallery, methods=["GET"])
    app.add_api_route("/api/users/{owner_id}/stats", get_stats, methods=["GET"])
    app.add_api_route("/api/users/{owner_id}/orphans", list_orphans, methods=["GET"])
    app.add_api_route("/api/users/{owner_id}/orphans", prune_orphans, methods=["DELETE"])

    # Serve stored artifacts directly when they live on the local filesystem,
    # so the URLs produced by LocalObjectStore resolve.
    if object_store is None and config.storage_backend == "local":
        app.mount(
            config.files_mount,
            StaticFiles(directory=str(config.storage_dir)),
            name="files",
        )

    return app


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :class:`GalleryConfig` (which loads
    ``FLUXGALLERY_SERVER_HOST``, ``FLUXGALLERY_SERVER_PORT`` and
    ``FLUXGALLERY_LOG_LEVEL``).  Defaults to ``0.0.0.0:7860``.

    This function is registered as the ``fluxgallery`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    config = GalleryConfig()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    uvicorn.run(
        "fluxgallery.api.main:create_app",
        factory=True,
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()

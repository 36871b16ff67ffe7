"""Flux Gallery — FastAPI REST API layer.

This package contains the FastAPI application factory, Pydantic request
models, and the gallery listing helpers.

Modules
-------
main
    Application factory, route handlers, error handlers and the ``main()``
    CLI entry point.
models
    Pydantic models for API request validation.
gallery_store
    Serialization, filtering, and pagination of reconstructed galleries.
"""

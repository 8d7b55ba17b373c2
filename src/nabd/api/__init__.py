"""Nabd prompt gallery: FastAPI REST API layer.

Modules
-------
main
    FastAPI application factory, route handlers, exception handlers and the
    ``main()`` CLI entry point.
models
    Pydantic models for request validation and camelCase responses.
session
    Anonymous session identifier resolution and cookie issuing.
dependencies
    FastAPI dependencies for the shared services and rate-limit quotas.
"""

"""PhotoGen - FastAPI REST API layer.

This package contains the FastAPI application, the Pydantic request models,
and the pagination helpers used by the task listing routes.

Modules
-------
main
    FastAPI application with all route handlers and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request validation.
pagination
    Offset/limit pagination and response envelope helpers.
"""

"""Application package for the CourseHub backend.

This package exposes the service, repository and model modules used by
the FastAPI application, plus the async API client and its
synchronization cache. Individual modules contain the concrete
implementations and documentation.
"""

"""REST surface built on FastAPI."""

from .app import create_app, run, status_for

__all__ = ["create_app", "run", "status_for"]

"""HTTP layer of the media wall."""

from .server import create_app

__all__ = ["create_app"]

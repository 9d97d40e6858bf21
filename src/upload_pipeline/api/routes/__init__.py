"""Route handlers for the API."""

from upload_pipeline.api.routes import files, health, uploads

__all__ = [
    "files",
    "health",
    "uploads",
]

"""ORM models package for database tables.

This package provides SQLAlchemy ORM models representing database tables:
- UploadSessionRow: Header of an in-flight chunked upload
- UploadPartRow: One received fragment per (session, index)
- StoredArtifact: Reassembled files committed by finalize

All models inherit from the shared Base declarative class defined in data.db.
"""

from upload_pipeline.data.db import Base
from upload_pipeline.data.models.stored_artifact import StoredArtifact
from upload_pipeline.data.models.upload_part import UploadPartRow
from upload_pipeline.data.models.upload_session import UploadSessionRow

__all__ = ["Base", "StoredArtifact", "UploadPartRow", "UploadSessionRow"]

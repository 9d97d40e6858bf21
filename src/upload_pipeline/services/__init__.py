"""Upload pipeline services"""

from upload_pipeline.services.artifact_catalog import (
    ArtifactCatalog,
    InMemoryArtifactCatalog,
    SqlArtifactCatalog,
)
from upload_pipeline.services.blob_store import (
    BlobStore,
    LocalBlobStore,
    MinioBlobStore,
    build_blob_store,
)
from upload_pipeline.services.part_storage import PartStorage
from upload_pipeline.services.pipeline import UploadPipeline, build_default_pipeline
from upload_pipeline.services.session_store import (
    InMemorySessionStore,
    SessionStore,
    SqlSessionStore,
)

__all__ = [
    "ArtifactCatalog",
    "InMemoryArtifactCatalog",
    "SqlArtifactCatalog",
    "BlobStore",
    "LocalBlobStore",
    "MinioBlobStore",
    "build_blob_store",
    "PartStorage",
    "UploadPipeline",
    "build_default_pipeline",
    "InMemorySessionStore",
    "SessionStore",
    "SqlSessionStore",
]

# Object storage
from clipforge.storage.base import ObjectStore, ObjectNotFoundError
from clipforge.storage.keys import ArtifactKeys, artifact_key
from clipforge.storage.local import LocalObjectStore
from clipforge.storage.gcs import GCSObjectStore


def build_object_store(settings) -> ObjectStore:
    """Create the configured object store."""
    if settings.storage_backend == "gcs":
        return GCSObjectStore(settings.gcs_bucket)
    return LocalObjectStore(settings.storage_root)


__all__ = [
    "ObjectStore",
    "ObjectNotFoundError",
    "ArtifactKeys",
    "artifact_key",
    "LocalObjectStore",
    "GCSObjectStore",
    "build_object_store",
]

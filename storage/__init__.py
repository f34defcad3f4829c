from .blob import BlobConfig, BlobStore, S3BlobStore, load_blob_config

__all__ = [
    "BlobStore",
    "BlobConfig",
    "S3BlobStore",
    "load_blob_config",
]

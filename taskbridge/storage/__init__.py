from taskbridge.storage.blob_store import BlobNotFoundError, LocalBlobStore, get_blob_store

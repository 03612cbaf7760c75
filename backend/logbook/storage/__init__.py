from logbook.storage.s3 import DocumentStorage, StoredObject

__all__ = ["DocumentStorage", "StoredObject"]

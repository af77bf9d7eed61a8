"""Persistent storage providers: Cloudinary (primary) and Supabase (fallback)."""

from mediaforge.services.storage.base import StorageProvider, StoredObject, UploadMetadata
from mediaforge.services.storage.cloudinary import CloudinaryStorage
from mediaforge.services.storage.supabase import SupabaseStorage

__all__ = [
    "CloudinaryStorage",
    "StorageProvider",
    "StoredObject",
    "SupabaseStorage",
    "UploadMetadata",
]

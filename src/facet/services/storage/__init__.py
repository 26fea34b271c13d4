"""Durable storage and result materialization."""

from facet.services.storage.materializer import ResultMaterializer
from facet.services.storage.supabase_storage import BlobStore, SupabaseStorageClient

__all__ = ["BlobStore", "SupabaseStorageClient", "ResultMaterializer"]

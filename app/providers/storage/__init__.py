"""
Storage Providers - object storage abstraction.

    storage/
    ├── interface.py       # StorageProviderInterface + UploadResult
    ├── firebase_impl.py   # Firebase Storage REST
    └── supabase_impl.py   # Supabase Storage bucket
"""

from .interface import FileSource, StorageProviderInterface, UploadResult

__all__ = ["FileSource", "StorageProviderInterface", "UploadResult"]

"""
S3 storage backend for OSS-Store.
"""

from .storage import S3Storage

__all__ = ["S3Storage"]

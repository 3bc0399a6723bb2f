"""
Public API for OSS-Store.
"""

from .store import create_storage

__all__ = ["create_storage"]

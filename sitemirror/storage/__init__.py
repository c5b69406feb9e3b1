"""
Storage layer: the on-disk mirror.
"""

from .content_store import ContentStore, FetchedResource, ContentClass

__all__ = ['ContentStore', 'FetchedResource', 'ContentClass']

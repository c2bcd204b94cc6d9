"""
ctxrepo Storage

File-based archive of extracted contexts with per-project and global indexes.
"""

from .file_store import FileStore, write_json_atomic

__all__ = ['FileStore', 'write_json_atomic']

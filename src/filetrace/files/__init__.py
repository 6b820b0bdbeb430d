"""File metadata catalog and owner actions."""

from .model import FILE_CATEGORIES, FileCatalog, FileRecord, InMemoryFileCatalog

__all__ = ['FILE_CATEGORIES', 'FileCatalog', 'FileRecord', 'InMemoryFileCatalog']

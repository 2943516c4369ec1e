from .dictionary import (
    DictionaryImportError,
    DictionaryStore,
    LoadError,
    ValidationError,
    merge_layers,
)
from .page import (
    ApplyError,
    DocumentHost,
    PageApplier,
    PageHost,
    RestoreError,
)
from .storage import JsonFileStorage, MemoryStorage, StorageError
from .substitution import substitute_html, substitute_text, substitute_tree

__all__ = [
    "DictionaryStore",
    "merge_layers",
    "LoadError",
    "ValidationError",
    "DictionaryImportError",
    "StorageError",
    "JsonFileStorage",
    "MemoryStorage",
    "substitute_text",
    "substitute_tree",
    "substitute_html",
    "PageApplier",
    "PageHost",
    "DocumentHost",
    "ApplyError",
    "RestoreError",
]

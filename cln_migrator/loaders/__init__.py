"""Bulk loaders that copy schema and rows from SQLite into PostgreSQL."""

from .base import Loader, LoadResult, LoadStatus, LoadTarget, OutputCallback
from .factory import LoaderFactory, register_loader

# Import loaders to register them
from .pgloader import PgloaderLoader

__all__ = [
    "Loader",
    "LoadResult",
    "LoadStatus",
    "LoadTarget",
    "OutputCallback",
    "LoaderFactory",
    "register_loader",
    "PgloaderLoader",
]

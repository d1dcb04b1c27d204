from .repository import (
    DatasetNotFoundError,
    DatasetRepository,
    InMemoryRepository,
    InvalidStatusTransition,
    StorageError,
)

__all__ = [
    "DatasetNotFoundError",
    "DatasetRepository",
    "InMemoryRepository",
    "InvalidStatusTransition",
    "StorageError",
]

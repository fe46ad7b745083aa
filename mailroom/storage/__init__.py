from .base import StorageBackend
from .memory import InMemoryStorage
from .metrics import StorageMetrics
from .redis import RedisConfig, RedisStorage
from .transaction import Transaction

__all__ = [
    "InMemoryStorage",
    "RedisConfig",
    "RedisStorage",
    "StorageBackend",
    "StorageMetrics",
    "Transaction",
]

"""External integrations: gateway, key-value store and the status API."""
from .bonum_client import BonumClient
from .credential_cache import CredentialCache
from .kv_store import KeyValueStore, RedisKeyValueStore
from .status_client import PaymentStatusClient

__all__ = [
    "BonumClient",
    "CredentialCache",
    "KeyValueStore",
    "PaymentStatusClient",
    "RedisKeyValueStore",
]

"""
credentials/ — maybot Provider Credential Pool

Public API:
    from maybot.credentials import CredentialPool, CredentialStore

    store = CredentialStore(state_db)
    await store.seed(settings.gemini_api_keys(), rpm_limit=15, rpd_limit=1500)
    pool = CredentialPool.from_settings(store, settings)
    result = await pool.execute_with_retry(call_with_key)
"""

from maybot.credentials.pool import (
    CredentialPool,
    KeyHealth,
    PoolStatus,
    is_throttling_error,
)
from maybot.credentials.store import Credential, CredentialStore

__all__ = [
    "CredentialPool",
    "CredentialStore",
    "Credential",
    "KeyHealth",
    "PoolStatus",
    "is_throttling_error",
]

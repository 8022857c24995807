import hashlib
import logging
from contextlib import contextmanager
from typing import Iterator

from jose import jwe
from jose.exceptions import JOSEError
from sqlalchemy.orm import Session, sessionmaker

from Folio.crud.api_keys import get_api_key_row, get_api_key_rows, upsert_api_key
from Folio.services.ai.providers import get_provider
from Folio.services.errors import ApiKeyDecryptionError, NotFoundError

logger = logging.getLogger(__name__)


# Show only enough of a key for the user to recognise it
def mask_api_key(key: str) -> str:
    if len(key) <= 8:
        return "*" * len(key)
    return f"{key[:4]}{'*' * 4}{key[-4:]}"


# Per-user provider keys, stored as compact JWE (dir + A256GCM) under a key derived from the app secret
class ApiKeyStore:
    def __init__(self, session_factory: sessionmaker, secret: str):
        if not secret:
            raise RuntimeError("API_KEY_ENCRYPTION_SECRET must be set.")
        self._session_factory = session_factory
        self._key = hashlib.sha256(secret.encode("utf-8")).digest()

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def encrypt(self, plaintext: str) -> str:
        token = jwe.encrypt(plaintext.encode("utf-8"), self._key, algorithm="dir", encryption="A256GCM")
        return token.decode("utf-8") if isinstance(token, bytes) else token

    def decrypt(self, token: str, provider: str) -> str:
        try:
            return jwe.decrypt(token, self._key).decode("utf-8")
        except (JOSEError, ValueError):
            logger.error("api_keys.decrypt.error: provider=%s", provider)
            raise ApiKeyDecryptionError(provider)

    def get_api_key(self, user_id: str, provider: str) -> str:
        provider_id = get_provider(provider).id
        with self._transaction() as session:
            row = get_api_key_row(session, user_id, provider_id)
            if row is None:
                raise NotFoundError("API key", provider_id)
            token = row.key
        return self.decrypt(token, provider_id)

    # Stores every non-empty key in `keys` ({provider: plaintext}); returns the masked view
    def upsert_api_keys(self, user_id: str, keys: dict[str, str]) -> dict[str, str]:
        cleaned: dict[str, str] = {}
        for provider, key in keys.items():
            provider_id = get_provider(provider).id
            if isinstance(key, str) and key.strip():
                cleaned[provider_id] = key.strip()

        with self._transaction() as session:
            for provider_id, key in cleaned.items():
                upsert_api_key(session, user_id, provider_id, self.encrypt(key))
        logger.info("api_keys.upsert: providers=%s", ",".join(sorted(cleaned)))
        return self.list_masked(user_id)

    def list_masked(self, user_id: str) -> dict[str, str]:
        with self._transaction() as session:
            rows = [(row.provider, row.key) for row in get_api_key_rows(session, user_id)]
        return {provider: mask_api_key(self.decrypt(token, provider)) for provider, token in rows}

from __future__ import annotations

import asyncio

import pytest

from shared.secrets import FernetSecretCipher, decrypt_env_vars
from shared.stores import InMemoryDedupeStore, InMemoryLockStore
from workflow_core.errors import SecretDecryptionFailed


def test_fernet_round_trip_and_env_decryption():
    cipher = FernetSecretCipher(FernetSecretCipher.generate_key())
    encrypted = {"API_KEY": cipher.encrypt("sk-123"), "REGION": cipher.encrypt("eu")}

    assert decrypt_env_vars(encrypted, cipher) == {"API_KEY": "sk-123", "REGION": "eu"}
    assert decrypt_env_vars({}, cipher) == {}


def test_decryption_failure_names_the_variable():
    cipher = FernetSecretCipher(FernetSecretCipher.generate_key())
    other = FernetSecretCipher(FernetSecretCipher.generate_key())
    encrypted = {"GOOD": cipher.encrypt("ok"), "BAD": other.encrypt("nope")}

    with pytest.raises(SecretDecryptionFailed) as excinfo:
        decrypt_env_vars(encrypted, cipher)
    assert excinfo.value.key == "BAD"
    assert 'Failed to decrypt environment variable "BAD"' in str(excinfo.value)


def test_missing_key_cannot_build_cipher(monkeypatch):
    from shared import secrets

    monkeypatch.setattr(secrets.config, "encryption_key", None)
    monkeypatch.setattr(secrets, "_default_cipher", None)
    with pytest.raises(SecretDecryptionFailed):
        decrypt_env_vars({"TOKEN": "gAAAA"})


@pytest.mark.asyncio
async def test_dedupe_mark_if_new_is_atomic():
    store = InMemoryDedupeStore()
    results = await asyncio.gather(*(store.mark_if_new("generic:abc", 60) for _ in range(10)))
    assert results.count(True) == 1
    assert await store.has_processed("generic:abc")
    assert not await store.has_processed("generic:other")


@pytest.mark.asyncio
async def test_dedupe_keys_expire():
    store = InMemoryDedupeStore()
    await store.mark_processed("whatsapp:msg:1", 60)
    await store.mark_processed("whatsapp:msg:2", 0)

    assert await store.has_processed("whatsapp:msg:1")
    assert not await store.has_processed("whatsapp:msg:2")
    assert await store.mark_if_new("whatsapp:msg:2", 60)


@pytest.mark.asyncio
async def test_lock_single_owner_until_released():
    locks = InMemoryLockStore()
    assert await locks.acquire("gmail-polling-lock", "req-1", 180)
    assert not await locks.acquire("gmail-polling-lock", "req-2", 180)
    assert await locks.owner("gmail-polling-lock") == "req-1"

    await locks.release("gmail-polling-lock")
    await locks.release("gmail-polling-lock")
    assert await locks.acquire("gmail-polling-lock", "req-2", 180)

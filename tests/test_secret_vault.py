"""
Tests for SecretVault: storing, serving and removing provider secrets.
"""
import asyncio

import pytest
import pytest_asyncio

from pin_vault.conf import PIN_HASH_KEY, SECRETS_KEY
from pin_vault.exceptions import (
    ClearFailed,
    DecryptionFailed,
    InvalidPin,
    PinRequired,
    RemovalFailed,
    StorageValidationFailed,
)
from pin_vault.storage import MemoryStorage
from pin_vault.vault import SecretVault, SecurityConfig, crypto


@pytest_asyncio.fixture
async def unlocked(vault):
    await vault.setup_pin("1234")
    return vault


class TestScenarioB:

    @pytest.mark.asyncio
    async def test_cached_then_pin_required(self, unlocked):
        vault = unlocked
        await vault.store_secret("openai", "sk-test-123", "1234")
        assert await vault.get_secret("openai") == "sk-test-123"

        vault.clear_session_cache()
        with pytest.raises(PinRequired):
            await vault.get_secret("openai")

        assert await vault.get_secret("openai", "1234") == "sk-test-123"
        assert await vault.get_secret("openai") == "sk-test-123"


class TestStore:

    @pytest.mark.asyncio
    async def test_persisted_form_is_encrypted(self, unlocked, storage):
        await unlocked.store_secret("openai", "sk-test-123", "1234")
        stored = storage.snapshot()[SECRETS_KEY]["openai"]
        assert set(stored) == {"providerId", "ciphertext", "salt", "iv", "createdAt"}
        assert "sk-test-123" not in str(storage.snapshot())

    @pytest.mark.asyncio
    async def test_salts_are_independent(self, unlocked, storage):
        await unlocked.store_secret("openai", "sk-test-123", "1234")
        snapshot = storage.snapshot()
        assert snapshot[SECRETS_KEY]["openai"]["salt"] != snapshot[PIN_HASH_KEY]["salt"]
        assert snapshot[SECRETS_KEY]["openai"]["ciphertext"] != snapshot[PIN_HASH_KEY]["hash"]

    @pytest.mark.asyncio
    async def test_overwrite_replaces_entry(self, unlocked):
        await unlocked.store_secret("openai", "sk-old", "1234")
        await unlocked.store_secret("openai", "sk-new", "1234")
        providers = await unlocked.list_providers()
        assert [p.provider_id for p in providers] == ["openai"]
        unlocked.clear_session_cache()
        assert await unlocked.get_secret("openai", "1234") == "sk-new"

    @pytest.mark.asyncio
    async def test_wrong_pin_stores_nothing(self, unlocked, storage):
        with pytest.raises(InvalidPin):
            await unlocked.store_secret("openai", "sk-test-123", "9999")
        assert SECRETS_KEY not in storage.snapshot()

    @pytest.mark.asyncio
    async def test_invalid_provider_id(self, unlocked):
        with pytest.raises(ValueError):
            await unlocked.store_secret("", "sk-test-123", "1234")
        with pytest.raises(ValueError):
            await unlocked.store_secret("p" * 256, "sk-test-123", "1234")


class TestIntegrityGate:

    @pytest.mark.asyncio
    async def test_mismatch_aborts(self, unlocked, storage, monkeypatch):
        monkeypatch.setattr(crypto, "decrypt_from_text", lambda *args: "sk-garbled")
        with pytest.raises(StorageValidationFailed):
            await unlocked.store_secret("openai", "sk-test-123", "1234")
        assert SECRETS_KEY not in storage.snapshot()
        assert await unlocked.list_providers() == []
        with pytest.raises(PinRequired):
            await unlocked.get_secret("openai")

    @pytest.mark.asyncio
    async def test_decrypt_failure_aborts(self, unlocked, storage, monkeypatch):
        def broken(*args):
            raise DecryptionFailed()
        monkeypatch.setattr(crypto, "decrypt_from_text", broken)
        with pytest.raises(StorageValidationFailed):
            await unlocked.store_secret("openai", "sk-test-123", "1234")
        assert SECRETS_KEY not in storage.snapshot()

    @pytest.mark.asyncio
    async def test_validate_secret_integrity(self, unlocked):
        assert await unlocked.validate_secret_integrity("sk-test-123", "1234") is True


class TestGet:

    @pytest.mark.asyncio
    async def test_missing_entry_is_none(self, unlocked):
        assert await unlocked.get_secret("anthropic", "1234") is None

    @pytest.mark.asyncio
    async def test_get_refreshes_last_used(self, unlocked, clock):
        await unlocked.store_secret("openai", "sk-test-123", "1234")
        clock.advance(5000)
        await unlocked.get_secret("openai", "1234")
        (info,) = await unlocked.list_providers()
        assert info.last_used_at == clock.now
        assert info.created_at < info.last_used_at

    @pytest.mark.asyncio
    async def test_locked_session_drops_cache(self, unlocked):
        await unlocked.store_secret("openai", "sk-test-123", "1234")
        await unlocked.lock_session()
        with pytest.raises(PinRequired):
            await unlocked.get_secret("openai")

    @pytest.mark.asyncio
    async def test_expired_session_drops_cache(self, unlocked, clock):
        await unlocked.store_secret("openai", "sk-test-123", "1234")
        clock.advance(SecurityConfig().session_timeout_ms + 1)
        with pytest.raises(PinRequired):
            await unlocked.get_secret("openai")
        clock.advance(-SecurityConfig().session_timeout_ms)
        assert unlocked.is_session_valid() is False

    @pytest.mark.asyncio
    async def test_tampered_ciphertext(self, unlocked, storage):
        await unlocked.store_secret("openai", "sk-test-123", "1234")
        data = await storage.get([SECRETS_KEY])
        entry = data[SECRETS_KEY]["openai"]
        other = crypto.encrypt_to_text("sk-evil", "1234")
        entry["ciphertext"] = other["ciphertext"]
        await storage.set(data)
        with pytest.raises(DecryptionFailed):
            await unlocked.get_secret("openai", "1234")

    @pytest.mark.asyncio
    async def test_corrupted_collection_loads_empty(self, unlocked, storage):
        await storage.set({SECRETS_KEY: ["not", "a", "mapping"]})
        assert await unlocked.list_providers() == []
        await storage.set({SECRETS_KEY: {"openai": {"providerId": "openai"}}})
        assert await unlocked.has_secret("openai") is False


class TestRemoveAndClear:

    @pytest.mark.asyncio
    async def test_remove_secret(self, unlocked):
        await unlocked.store_secret("openai", "sk-test-123", "1234")
        await unlocked.remove_secret("openai", "1234")
        assert await unlocked.has_secret("openai") is False
        with pytest.raises(PinRequired):
            await unlocked.get_secret("openai")
        assert await unlocked.get_secret("openai", "1234") is None

    @pytest.mark.asyncio
    async def test_remove_failure(self, unlocked, storage):
        await unlocked.store_secret("openai", "sk-test-123", "1234")
        storage.fail_keys.add(SECRETS_KEY)
        with pytest.raises(RemovalFailed) as exc:
            await unlocked.remove_secret("openai", "1234")
        assert exc.value.context["provider_id"] == "openai"

    @pytest.mark.asyncio
    async def test_remove_requires_pin(self, unlocked):
        await unlocked.store_secret("openai", "sk-test-123", "1234")
        with pytest.raises(InvalidPin):
            await unlocked.remove_secret("openai", "9999")
        assert await unlocked.has_secret("openai") is True

    @pytest.mark.asyncio
    async def test_clear_all(self, unlocked):
        await unlocked.store_secret("openai", "sk-1", "1234")
        await unlocked.store_secret("anthropic", "sk-2", "1234")
        await unlocked.clear_all_secrets("1234")
        assert await unlocked.list_providers() == []
        with pytest.raises(PinRequired):
            await unlocked.get_secret("anthropic")

    @pytest.mark.asyncio
    async def test_clear_failure(self, unlocked, storage):
        await unlocked.store_secret("openai", "sk-1", "1234")
        storage.fail_keys.add(SECRETS_KEY)
        with pytest.raises(ClearFailed):
            await unlocked.clear_all_secrets("1234")


class TestListProviders:

    @pytest.mark.asyncio
    async def test_list_never_decrypts(self, unlocked, monkeypatch):
        await unlocked.store_secret("openai", "sk-1", "1234")
        await unlocked.store_secret("anthropic", "sk-2", "1234")
        await unlocked.lock_session()

        def forbidden(*args):
            raise AssertionError("list_providers must not decrypt")
        monkeypatch.setattr(crypto, "decrypt_from_text", forbidden)
        providers = await unlocked.list_providers()
        assert {p.provider_id for p in providers} == {"openai", "anthropic"}
        assert all(p.last_used_at is None for p in providers)


class TestPinLifecycle:

    @pytest.mark.asyncio
    async def test_change_pin_reencrypts_secrets(self, unlocked):
        await unlocked.store_secret("openai", "sk-test-123", "1234")
        await unlocked.change_pin("1234", "5678")
        assert unlocked.is_session_valid() is False
        with pytest.raises(PinRequired):
            await unlocked.get_secret("openai")
        assert await unlocked.get_secret("openai", "5678") == "sk-test-123"

    @pytest.mark.asyncio
    async def test_failed_change_keeps_pin_and_secrets(self, unlocked, storage):
        await unlocked.store_secret("openai", "sk-test-123", "1234")
        storage.fail_keys.add(SECRETS_KEY)
        with pytest.raises(OSError):
            await unlocked.change_pin("1234", "5678")
        storage.fail_keys.clear()

        with pytest.raises(InvalidPin):
            await unlocked.verify_pin("5678")
        unlocked.clear_session_cache()
        assert await unlocked.get_secret("openai", "1234") == "sk-test-123"

    @pytest.mark.asyncio
    async def test_store_during_change_is_not_lost(self, unlocked):
        await unlocked.store_secret("openai", "sk-a", "1234")
        results = await asyncio.gather(
            unlocked.change_pin("1234", "5678"),
            unlocked.store_secret("anthropic", "sk-b", "1234"),
            return_exceptions=True,
        )
        assert results[0] is None
        # the store runs after the change and no longer matches the PIN
        assert isinstance(results[1], InvalidPin)
        assert await unlocked.has_secret("anthropic") is False
        assert await unlocked.get_secret("openai", "5678") == "sk-a"

    @pytest.mark.asyncio
    async def test_store_before_change_is_resealed(self, unlocked):
        await unlocked.store_secret("openai", "sk-a", "1234")
        results = await asyncio.gather(
            unlocked.store_secret("anthropic", "sk-b", "1234"),
            unlocked.change_pin("1234", "5678"),
        )
        assert results == [None, None]
        providers = await unlocked.list_providers()
        assert {p.provider_id for p in providers} == {"openai", "anthropic"}
        unlocked.clear_session_cache()
        assert await unlocked.get_secret("anthropic", "5678") == "sk-b"
        assert await unlocked.get_secret("openai", "5678") == "sk-a"

    @pytest.mark.asyncio
    async def test_remove_during_change_stays_removed(self, unlocked):
        await unlocked.store_secret("openai", "sk-a", "1234")
        await unlocked.store_secret("anthropic", "sk-b", "1234")
        await asyncio.gather(
            unlocked.remove_secret("anthropic", "1234"),
            unlocked.change_pin("1234", "5678"),
        )
        providers = await unlocked.list_providers()
        assert [p.provider_id for p in providers] == ["openai"]

    @pytest.mark.asyncio
    async def test_emergency_wipe_removes_secrets(self, unlocked, storage):
        await unlocked.store_secret("openai", "sk-test-123", "1234")
        await unlocked.emergency_wipe()
        assert SECRETS_KEY not in storage.snapshot()
        assert await unlocked.is_pin_setup() is False
        with pytest.raises(PinRequired):
            await unlocked.get_secret("openai")

    @pytest.mark.asyncio
    async def test_open_factory(self, clock, sleep):
        storage = MemoryStorage()
        vault = await SecretVault.open(
            storage, config=SecurityConfig(), clock=clock, sleep=sleep,
            hash_iterations=1000,
        )
        await vault.setup_pin("1234")
        await vault.store_secret("openai", "sk-test-123", "1234")

        reopened = await SecretVault.open(
            storage, config=SecurityConfig(), clock=clock, sleep=sleep,
        )
        assert reopened.is_session_valid() is True
        with pytest.raises(PinRequired):
            await reopened.get_secret("openai")
        assert await reopened.get_secret("openai", "1234") == "sk-test-123"

"""Credential vault tests."""

import json

import pytest

from metricsync.core.errors import DecryptionError, VaultError
from metricsync.core.vault import CredentialVault


@pytest.mark.parametrize(
    "plaintext",
    [
        json.dumps({"apiKey": "sk_test_123"}),
        json.dumps({"csvData": "Date,MRR\n2024-01-01,100\n", "fileName": "kpis.csv"}),
        "",
        "ünïcödé ✓",
        "x" * 5000,
    ],
)
def test_round_trip(vault, plaintext):
    blob = vault.encrypt(plaintext)
    assert vault.decrypt(blob.ciphertext, blob.iv) == plaintext


def test_ciphertext_never_contains_plaintext(vault):
    blob = vault.encrypt("sk_live_secret")
    assert "sk_live_secret" not in blob.ciphertext
    assert bytes.fromhex(blob.ciphertext) != b"sk_live_secret"


def test_fresh_iv_per_encryption(vault):
    first = vault.encrypt("same")
    second = vault.encrypt("same")
    assert first.iv != second.iv
    assert first.ciphertext != second.ciphertext


def test_wrong_key_raises_decryption_error(vault):
    blob = vault.encrypt(json.dumps({"apiKey": "sk_test_123"}))
    other = CredentialVault(secret="another-secret", iterations=1000)
    with pytest.raises(DecryptionError):
        other.decrypt(blob.ciphertext, blob.iv)


def test_tampered_ciphertext_raises(vault):
    blob = vault.encrypt("payload")
    raw = bytearray(bytes.fromhex(blob.ciphertext))
    raw[0] ^= 0x01
    with pytest.raises(DecryptionError):
        vault.decrypt(bytes(raw).hex(), blob.iv)


def test_tampered_iv_raises(vault):
    blob = vault.encrypt("payload")
    iv = bytearray(bytes.fromhex(blob.iv))
    iv[-1] ^= 0x01
    with pytest.raises(DecryptionError):
        vault.decrypt(blob.ciphertext, bytes(iv).hex())


@pytest.mark.parametrize(
    "ciphertext,iv",
    [("not-hex", "00" * 16), ("00" * 48, "zz"), ("00" * 8, "00" * 16), ("00" * 48, "00" * 4)],
)
def test_malformed_input_raises(vault, ciphertext, iv):
    with pytest.raises(DecryptionError):
        vault.decrypt(ciphertext, iv)


def test_missing_secret_is_a_configuration_error(monkeypatch):
    from metricsync.config import settings

    monkeypatch.setattr(settings, "encryption_secret", "")
    with pytest.raises(VaultError):
        CredentialVault()


def test_non_string_input_rejected(vault):
    with pytest.raises(VaultError):
        vault.encrypt({"apiKey": "x"})

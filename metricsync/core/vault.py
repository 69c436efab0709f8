"""MetricSync — Credential Vault.

AES-256-CBC with an HMAC-SHA256 tag over (iv || ciphertext). Both keys are
derived once per vault from the configured secret with PBKDF2 and a fixed
salt. The tag is appended to the ciphertext before hex encoding, so the
stored shape stays ``{ciphertext, iv}``.
"""

import os
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives import hmac as crypto_hmac
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from metricsync.config import settings
from metricsync.core.errors import DecryptionError, VaultError
from metricsync.models.records import EncryptedCredentials

IV_BYTES = 16
TAG_BYTES = 32
KEY_BYTES = 32


class CredentialVault:
    """Symmetric encryption boundary for provider credentials.

    Usage:
        vault = CredentialVault(secret="...")
        blob = vault.encrypt('{"apiKey": "sk_live_..."}')
        plaintext = vault.decrypt(blob.ciphertext, blob.iv)
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        salt: Optional[str] = None,
        iterations: Optional[int] = None,
    ):
        secret = secret or settings.encryption_secret
        if not secret:
            raise VaultError(
                "ENCRYPTION_SECRET not set. Configure it before storing provider credentials."
            )
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_BYTES * 2,
            salt=(salt or settings.encryption_salt).encode("utf-8"),
            iterations=iterations or settings.kdf_iterations,
        )
        derived = kdf.derive(secret.encode("utf-8"))
        self._enc_key = derived[:KEY_BYTES]
        self._mac_key = derived[KEY_BYTES:]

    def _tag(self, iv: bytes, ciphertext: bytes) -> bytes:
        h = crypto_hmac.HMAC(self._mac_key, hashes.SHA256())
        h.update(iv + ciphertext)
        return h.finalize()

    def encrypt(self, plaintext: str) -> EncryptedCredentials:
        """Encrypt a credential blob with a fresh random IV."""
        if not isinstance(plaintext, str):
            raise VaultError("Credentials must be a string")

        iv = os.urandom(IV_BYTES)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._enc_key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        sealed = ciphertext + self._tag(iv, ciphertext)
        return EncryptedCredentials(ciphertext=sealed.hex(), iv=iv.hex())

    def decrypt(self, ciphertext: str, iv: str) -> str:
        """Inverse of encrypt. Raises DecryptionError on wrong key or tampering."""
        try:
            sealed = bytes.fromhex(ciphertext)
            iv_bytes = bytes.fromhex(iv)
        except (TypeError, ValueError) as e:
            raise DecryptionError(f"Decryption failed: malformed hex input ({e})") from e

        if len(iv_bytes) != IV_BYTES or len(sealed) < TAG_BYTES + IV_BYTES:
            raise DecryptionError("Decryption failed: ciphertext or IV has the wrong length")

        body, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        h = crypto_hmac.HMAC(self._mac_key, hashes.SHA256())
        h.update(iv_bytes + body)
        try:
            h.verify(tag)
        except InvalidSignature as e:
            raise DecryptionError(
                "Decryption failed: integrity check failed. "
                "The data may be corrupted, tampered with, or encrypted with a different key."
            ) from e

        decryptor = Cipher(algorithms.AES(self._enc_key), modes.CBC(iv_bytes)).decryptor()
        try:
            padded = decryptor.update(body) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise DecryptionError(f"Decryption failed: {e}") from e

    def decrypt_blob(self, blob: EncryptedCredentials) -> str:
        return self.decrypt(blob.ciphertext, blob.iv)

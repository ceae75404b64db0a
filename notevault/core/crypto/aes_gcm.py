"""
AES-256-GCM Framing
===================

AES-256-GCM sealing that produces the vault's framed ciphertext:

    nonce (12 bytes) || ciphertext || authentication tag (16 bytes)

Security Properties:
    - 256-bit keys
    - 96-bit random nonce per sealing operation (NIST SP 800-38D)
    - 128-bit authentication tag, verified before any plaintext is returned
    - Optional Additional Authenticated Data

WARNING:
    - Never reuse a (key, nonce) pair; every seal draws a fresh nonce
    - InvalidTag means tampering, corruption or the wrong key
"""

from __future__ import annotations

import hmac
import secrets
from dataclasses import dataclass
from typing import Final, Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

AES_KEY_SIZE: Final[int] = 32  # 256 bits
AES_NONCE_SIZE: Final[int] = 12  # 96 bits
AES_TAG_SIZE: Final[int] = 16  # 128 bits
MIN_FRAME_SIZE: Final[int] = AES_NONCE_SIZE + AES_TAG_SIZE


@dataclass(frozen=True, slots=True)
class FramedCiphertext:
    """
    The three parts of one AES-GCM sealing operation.

    Attributes:
        nonce: 12-byte nonce
        ciphertext: Encrypted bytes, same length as the plaintext
        tag: 16-byte authentication tag
    """

    nonce: bytes
    ciphertext: bytes
    tag: bytes

    def to_bytes(self) -> bytes:
        return self.nonce + self.ciphertext + self.tag

    @classmethod
    def from_bytes(cls, data: bytes) -> FramedCiphertext:
        """
        Split a framed blob.

        Raises:
            ValueError: If the blob is shorter than nonce + tag
        """
        if len(data) < MIN_FRAME_SIZE:
            raise ValueError(
                f"Framed ciphertext too short: {len(data)} < {MIN_FRAME_SIZE} bytes"
            )
        return cls(
            nonce=bytes(data[:AES_NONCE_SIZE]),
            ciphertext=bytes(data[AES_NONCE_SIZE:-AES_TAG_SIZE]),
            tag=bytes(data[-AES_TAG_SIZE:]),
        )

    def __len__(self) -> int:
        return len(self.nonce) + len(self.ciphertext) + len(self.tag)

    def __repr__(self) -> str:
        return f"FramedCiphertext(ciphertext_len={len(self.ciphertext)})"


class AesGcmCipher:
    """
    AES-256-GCM sealing into framed ciphertext.

    Usage:
        cipher = AesGcmCipher()
        key = cipher.generate_key()

        frame = cipher.seal(b"secret", key)
        blob = frame.to_bytes()

        plaintext = cipher.open(FramedCiphertext.from_bytes(blob), key)
    """

    __slots__ = ()

    @staticmethod
    def generate_key() -> bytes:
        """32 bytes from the OS CSPRNG."""
        return secrets.token_bytes(AES_KEY_SIZE)

    @staticmethod
    def generate_nonce() -> bytes:
        """
        12 random bytes.

        Random 96-bit nonces stay collision-safe for up to 2^32
        seals under one key.
        """
        return secrets.token_bytes(AES_NONCE_SIZE)

    def seal(
        self,
        plaintext: bytes,
        key: bytes,
        aad: Optional[bytes] = None,
    ) -> FramedCiphertext:
        """
        Encrypt and authenticate plaintext under key with a fresh nonce.

        Raises:
            ValueError: If the key is not 32 bytes
        """
        self._check_key(key)
        nonce = self.generate_nonce()

        sealed = AESGCM(key).encrypt(nonce, plaintext, aad)

        # cryptography appends the tag to the ciphertext
        return FramedCiphertext(
            nonce=nonce,
            ciphertext=sealed[:-AES_TAG_SIZE],
            tag=sealed[-AES_TAG_SIZE:],
        )

    def open(
        self,
        frame: FramedCiphertext,
        key: bytes,
        aad: Optional[bytes] = None,
    ) -> bytes:
        """
        Verify and decrypt a frame.

        Raises:
            ValueError: If key or nonce sizes are wrong
            cryptography.exceptions.InvalidTag: If authentication fails
        """
        self._check_key(key)
        if len(frame.nonce) != AES_NONCE_SIZE:
            raise ValueError(f"Nonce must be exactly {AES_NONCE_SIZE} bytes")
        if len(frame.tag) != AES_TAG_SIZE:
            raise ValueError(f"Tag must be exactly {AES_TAG_SIZE} bytes")

        return AESGCM(key).decrypt(frame.nonce, frame.ciphertext + frame.tag, aad)

    @staticmethod
    def _check_key(key: bytes) -> None:
        if len(key) != AES_KEY_SIZE:
            raise ValueError(f"Key must be exactly {AES_KEY_SIZE} bytes")

    @staticmethod
    def constant_time_compare(a: bytes, b: bytes) -> bool:
        return hmac.compare_digest(a, b)

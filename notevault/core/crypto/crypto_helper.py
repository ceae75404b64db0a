"""
Payload Encryption Helper
=========================

Stateless serialize+seal and open+deserialize for structured payloads.

Serialization is canonical JSON (sorted keys, compact separators,
UTF-8) so the same logical payload always produces the same plaintext
bytes. Every seal draws a fresh nonce, so ciphertexts still differ.

Failure Mapping:
    - Frame too short or tag mismatch  -> AuthenticationFailure
    - Plaintext not the expected shape -> DeserializationError
    - Sealing failure                  -> EncryptionError
"""

from __future__ import annotations

import json
from typing import Any, Protocol, Type, TypeVar

from cryptography.exceptions import InvalidTag

from notevault.core.crypto.aes_gcm import AesGcmCipher, FramedCiphertext
from notevault.core.errors import (
    AuthenticationFailure,
    DeserializationError,
    EncryptionError,
)


class SerializablePayload(Protocol):
    def to_dict(self) -> dict[str, Any]: ...

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Any: ...


P = TypeVar("P", bound=SerializablePayload)

_cipher = AesGcmCipher()


def canonical_json(data: Any) -> bytes:
    """Byte-stable JSON encoding."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


class CryptoHelper:
    """
    Authenticated encryption of payloads and raw bytes.

    Usage:
        key = CryptoHelper.generate_key()
        blob = CryptoHelper.encrypt(payload, key)
        same = CryptoHelper.decrypt(blob, key, NotePayload)
    """

    __slots__ = ()

    @staticmethod
    def generate_key() -> bytes:
        return AesGcmCipher.generate_key()

    @staticmethod
    def serialize(payload: SerializablePayload) -> bytes:
        return canonical_json(payload.to_dict())

    @staticmethod
    def encrypt(payload: SerializablePayload, key: bytes) -> bytes:
        """
        Serialize and seal a payload.

        Args:
            payload: Object exposing to_dict()
            key: 32-byte symmetric key

        Returns:
            nonce (12) || ciphertext || tag (16)

        Raises:
            EncryptionError: If serialization or sealing fails
        """
        try:
            plaintext = CryptoHelper.serialize(payload)
        except (TypeError, ValueError) as e:
            raise EncryptionError("Payload could not be serialized") from e
        return CryptoHelper.seal_bytes(plaintext, key)

    @staticmethod
    def decrypt(blob: bytes, key: bytes, payload_type: Type[P]) -> P:
        """
        Open a framed blob and rebuild the payload.

        Args:
            blob: Framed ciphertext from encrypt()
            key: 32-byte symmetric key
            payload_type: Class exposing from_dict()

        Returns:
            The reconstructed payload

        Raises:
            AuthenticationFailure: Tag mismatch, wrong key, or truncated frame
            DeserializationError: Authenticated bytes are not a valid payload
        """
        plaintext = CryptoHelper.open_bytes(blob, key)

        try:
            data = json.loads(plaintext.decode("utf-8"))
            if not isinstance(data, dict):
                raise TypeError("payload root must be an object")
            return payload_type.from_dict(data)
        except (UnicodeDecodeError, ValueError, TypeError, KeyError, AttributeError) as e:
            raise DeserializationError(
                f"Decrypted data is not a valid {payload_type.__name__}"
            ) from e

    @staticmethod
    def seal_bytes(data: bytes, key: bytes) -> bytes:
        """
        Seal raw bytes into a framed blob.

        Raises:
            EncryptionError: If the key is invalid or sealing fails
        """
        try:
            return _cipher.seal(data, key).to_bytes()
        except (ValueError, TypeError, OverflowError) as e:
            raise EncryptionError(f"Sealing failed: {e}") from e

    @staticmethod
    def open_bytes(blob: bytes, key: bytes) -> bytes:
        """
        Open a framed blob. No plaintext is returned unless the tag verifies.

        Raises:
            AuthenticationFailure: On any verification failure
        """
        try:
            frame = FramedCiphertext.from_bytes(blob)
            return _cipher.open(frame, key)
        except InvalidTag as e:
            raise AuthenticationFailure("Authentication tag mismatch") from e
        except ValueError as e:
            raise AuthenticationFailure(f"Malformed framed ciphertext: {e}") from e

    @staticmethod
    def split_frame(blob: bytes) -> FramedCiphertext:
        """
        Split a framed blob into nonce, ciphertext and tag.

        Raises:
            AuthenticationFailure: If the blob is too short to be a frame
        """
        try:
            return FramedCiphertext.from_bytes(blob)
        except ValueError as e:
            raise AuthenticationFailure(str(e)) from e

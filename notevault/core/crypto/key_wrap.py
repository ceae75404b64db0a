"""
RSA-OAEP Key Wrapping
=====================

Wraps the 32-byte ephemeral export key for a recipient's RSA public key.

Scheme:
    RSA-OAEP with SHA-256 as both the OAEP hash and the MGF1 hash,
    no label. Advertised in export manifests as "RSA-OAEP-SHA256".

Accepted recipient keys:
    - PEM ("PUBLIC KEY" or "RSA PUBLIC KEY")
    - DER (SubjectPublicKeyInfo or PKCS#1 RSAPublicKey)
    - RSA only, at least 2048 bits
"""

from __future__ import annotations

from typing import Final

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from notevault.core.errors import KeyWrapError

KEY_WRAP_ALGORITHM: Final[str] = "RSA-OAEP-SHA256"
MIN_RECIPIENT_KEY_BITS: Final[int] = 2048
RSA_PUBLIC_EXPONENT: Final[int] = 65537


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def generate_rsa_private_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=key_size)


def load_recipient_public_key(key_data: bytes | str) -> rsa.RSAPublicKey:
    """
    Parse a recipient public key.

    Args:
        key_data: PEM text/bytes or DER bytes

    Returns:
        RSA public key

    Raises:
        KeyWrapError: Unparseable data, a non-RSA key, or a key under 2048 bits
    """
    if isinstance(key_data, str):
        try:
            key_data = key_data.encode("ascii", errors="strict")
        except UnicodeEncodeError as e:
            raise KeyWrapError("Recipient public key is not ASCII PEM text") from e

    if not key_data:
        raise KeyWrapError("Recipient public key is empty")

    try:
        if key_data.lstrip().startswith(b"-----BEGIN"):
            public_key = serialization.load_pem_public_key(key_data)
        else:
            public_key = serialization.load_der_public_key(key_data)
    except (ValueError, TypeError) as e:
        raise KeyWrapError("Recipient public key is malformed") from e

    if not isinstance(public_key, rsa.RSAPublicKey):
        raise KeyWrapError("Recipient public key is not an RSA key")

    if public_key.key_size < MIN_RECIPIENT_KEY_BITS:
        raise KeyWrapError(
            f"Recipient key too small: {public_key.key_size} < {MIN_RECIPIENT_KEY_BITS} bits"
        )

    return public_key


def wrap_key(key: bytes, public_key: rsa.RSAPublicKey) -> bytes:
    """
    Encrypt a symmetric key for the holder of public_key.

    Raises:
        KeyWrapError: If encryption fails
    """
    try:
        return public_key.encrypt(key, _oaep())
    except (ValueError, TypeError) as e:
        raise KeyWrapError("Key wrap failed") from e


def unwrap_key(wrapped: bytes, private_key: rsa.RSAPrivateKey) -> bytes:
    """
    Recover a wrapped symmetric key.

    Raises:
        KeyWrapError: If the ciphertext does not decrypt under private_key
    """
    try:
        return private_key.decrypt(wrapped, _oaep())
    except (ValueError, TypeError) as e:
        raise KeyWrapError("Key unwrap failed") from e


def public_key_to_der(public_key: rsa.RSAPublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def public_key_to_pem(public_key: rsa.RSAPublicKey) -> str:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def private_key_to_der(private_key: rsa.RSAPrivateKey) -> bytes:
    """PKCS#8 DER, unencrypted; callers must only hand this to a sealed key store."""
    return private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def private_key_from_der(data: bytes) -> rsa.RSAPrivateKey:
    private_key = serialization.load_der_private_key(data, password=None)
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise ValueError("Stored identity is not an RSA private key")
    return private_key

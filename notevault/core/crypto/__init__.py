"""
NoteVault Cryptographic Core
============================

Architecture:
    1. AES-256-GCM: framed authenticated encryption of notes, attachments
       and export bundles
    2. RSA-OAEP-SHA256: wrapping of per-export keys for a recipient
    3. Argon2id / HKDF-SHA256: key derivation for the sealed key store
       and deterministic test keys

Framed ciphertext:
    nonce (12) || ciphertext || tag (16)

WARNING: This module handles sensitive cryptographic material.
         Incorrect usage can compromise security.
"""

from notevault.core.crypto.aes_gcm import AesGcmCipher, FramedCiphertext
from notevault.core.crypto.crypto_helper import CryptoHelper

__all__ = [
    "AesGcmCipher",
    "CryptoHelper",
    "FramedCiphertext",
]

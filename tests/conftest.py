from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from notevault.core.crypto.key_wrap import generate_rsa_private_key, public_key_to_pem
from notevault.core.errors import ErrorReporter
from notevault.core.file_ops.attachments import AttachmentManager
from notevault.core.file_ops.export import ExportManager
from notevault.core.keys.key_manager import KeyManager
from notevault.core.keys.providers import DeterministicKeyProvider
from notevault.core.notes.models import NotePayload, RichText
from notevault.core.notes.note_service import NoteService
from notevault.db.vault_db import VaultDatabase


@pytest.fixture(scope="session")
def identity_key() -> rsa.RSAPrivateKey:
    return generate_rsa_private_key(2048)


@pytest.fixture(scope="session")
def recipient_key() -> rsa.RSAPrivateKey:
    return generate_rsa_private_key(2048)


@pytest.fixture(scope="session")
def recipient_pem(recipient_key: rsa.RSAPrivateKey) -> str:
    return public_key_to_pem(recipient_key.public_key())


@pytest.fixture
def reporter() -> ErrorReporter:
    return ErrorReporter()


@pytest.fixture
def key_manager(identity_key: rsa.RSAPrivateKey, reporter: ErrorReporter) -> KeyManager:
    provider = DeterministicKeyProvider(identity=identity_key)
    return KeyManager(provider, error_reporter=reporter)


@pytest.fixture
def database(tmp_path: Path) -> VaultDatabase:
    return VaultDatabase(tmp_path / "vault.db")


@pytest.fixture
def notes(database: VaultDatabase, key_manager: KeyManager, reporter: ErrorReporter) -> NoteService:
    return NoteService(database, key_manager, error_reporter=reporter)


@pytest.fixture
def attachments(
    database: VaultDatabase, key_manager: KeyManager, reporter: ErrorReporter
) -> AttachmentManager:
    return AttachmentManager(database, key_manager, error_reporter=reporter)


@pytest.fixture
def export_dir(tmp_path: Path) -> Path:
    return tmp_path / "exports"


@pytest.fixture
def exporter(
    notes: NoteService,
    attachments: AttachmentManager,
    export_dir: Path,
    reporter: ErrorReporter,
) -> Iterator[ExportManager]:
    manager = ExportManager(notes, attachments, export_dir, error_reporter=reporter)
    yield manager
    manager.shutdown()


@pytest.fixture
def sample_payload() -> NotePayload:
    return NotePayload(
        title="Groceries",
        body=RichText.plain("Milk, eggs & <bread>"),
        tags=("home", "errands"),
    )

import os
import tempfile

# readify.config reads these at import time
os.environ.setdefault("READIFY_DATA_DIR", tempfile.mkdtemp(prefix="readify-test-"))
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest

from readify.blob_store import BlobStore
from readify.database import DatabaseManager
from readify.services.document_store import DocumentStore
from readify.services.user_service import UserService
from readify.session import Session


@pytest.fixture
def db(tmp_path):
    return DatabaseManager(tmp_path / "kv.db")


@pytest.fixture
def blobs(tmp_path):
    return BlobStore(tmp_path / "blobs")


@pytest.fixture
def documents(db, blobs):
    return DocumentStore(db, blobs)


@pytest.fixture
def sent_emails():
    return []


@pytest.fixture
def users(db, documents, sent_emails):
    def fake_send(to, name, link):
        sent_emails.append({"to": to, "name": name, "link": link})
        return {"id": "email-1"}

    return UserService(db, documents, send_email=fake_send)


@pytest.fixture
def alice():
    return Session(user_id="alice-id", email="alice@example.com", is_admin=False, expires=0)


@pytest.fixture
def bob():
    return Session(user_id="bob-id", email="bob@example.com", is_admin=False, expires=0)


@pytest.fixture
def admin():
    return Session(user_id="admin-id", email="admin@example.com", is_admin=True, expires=0)

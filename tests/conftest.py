"""Pytest configuration for FileTrace tests."""
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

# Add src/ to path for src-layout imports without an editable install.
_SRC = Path(__file__).parent.parent / 'src'
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import pytest
import pytest_asyncio

from filetrace.audit.model import InMemoryAuditLog
from filetrace.files.model import InMemoryFileCatalog, new_file_record
from filetrace.security.token_verify import AuthIdentity
from filetrace.sharing.store import InMemoryShareStore
from filetrace.storage import InMemoryObjectStore
from filetrace.users import InMemoryUserDirectory

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_identity(username: str = 'owner', user_id: str | None = None) -> AuthIdentity:
    return AuthIdentity(
        user_id=user_id or str(uuid.uuid4()),
        username=username,
        email=f'{username}@example.com',
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def share_store() -> InMemoryShareStore:
    return InMemoryShareStore()


@pytest.fixture
def audit_log() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture
def file_catalog() -> InMemoryFileCatalog:
    return InMemoryFileCatalog()


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore(base_url='http://objects.test', signing_key=b'k' * 32)


@pytest.fixture
def users() -> InMemoryUserDirectory:
    return InMemoryUserDirectory()


@pytest.fixture
def owner(users) -> AuthIdentity:
    record = users.add('owner', 'owner@example.com')
    return make_identity('owner', record.id)


@pytest.fixture
def recipient(users) -> AuthIdentity:
    record = users.add('Bob', 'bob@example.com')
    return make_identity('Bob', record.id)


@pytest_asyncio.fixture
async def stored_file(file_catalog, object_store, owner, now):
    """A file owned by ``owner`` with bytes in the object store."""
    key = await object_store.put(
        b'hello', owner_id=owner.user_id, filename='report.pdf',
        content_type='application/pdf',
    )
    return await file_catalog.add(new_file_record(
        owner_id=owner.user_id,
        filename='report.pdf',
        category='Work',
        size=5,
        mimetype='application/pdf',
        storage_key=key,
        now=now,
    ))

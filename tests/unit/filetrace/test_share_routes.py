"""Tests for the share, audit and files API endpoints.

Validates:
  - Share creation returns 201 with a share URL for link shares.
  - Malformed bodies get 400 with a details list.
  - Every invalid token gets the same 403 body.
  - Access ceilings hold through the download endpoint.
  - Revocation is idempotent and takes effect immediately.
  - Duplicate user shares get 409.
  - The audit trail is visible to the owner only.
  - Store outages surface as 503 with Retry-After.
"""

from __future__ import annotations

import time
import uuid

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from filetrace.errors import TransientStoreError
from filetrace.main import LOCAL_DEV_JWT_SECRET, create_app
from filetrace.security.token_verify import StaticKeyProvider, TokenVerifier
from filetrace.settings import FileTraceSettings
from filetrace.sharing.model import generate_share_token
from filetrace.sharing.routes import SHARE_DENIED_MESSAGE
from filetrace.sharing.store import InMemoryShareStore

TEST_SECRET = 'test-filetrace-route-secret-0123456789'


# ── Test helpers ──────────────────────────────────────────────────────


def _auth(identity, **overrides) -> dict[str, str]:
    payload = {
        'sub': identity.user_id,
        'username': identity.username,
        'email': identity.email,
        'exp': int(time.time()) + 3600,
        'iat': int(time.time()),
    }
    payload.update(overrides)
    token = jwt.encode(payload, TEST_SECRET, algorithm='HS256')
    return {'Authorization': f'Bearer {token}'}


def _make_app(share_store, audit_log, file_catalog, users, object_store):
    return create_app(
        FileTraceSettings(public_url='https://files.example.com'),
        share_store=share_store,
        audit_log=audit_log,
        file_catalog=file_catalog,
        user_directory=users,
        object_store=object_store,
        token_verifier=TokenVerifier(StaticKeyProvider(TEST_SECRET), algorithms=['HS256']),
    )


@pytest.fixture
def app(share_store, audit_log, file_catalog, users, object_store):
    return _make_app(share_store, audit_log, file_catalog, users, object_store)


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as c:
        yield c


async def _create_link(client, owner, file_id, **fields):
    body = {'file_id': file_id, 'share_type': 'link', **fields}
    resp = await client.post('/api/share/create', json=body, headers=_auth(owner))
    assert resp.status_code == 201, resp.text
    return resp.json()['share']


# =====================================================================
# Creation
# =====================================================================


class TestCreateShare:

    @pytest.mark.asyncio
    async def test_create_link_share(self, client, owner, stored_file):
        share = await _create_link(client, owner, stored_file.id, max_access_count=3)

        assert share['kind'] == 'link'
        assert share['remaining_accesses'] == 3
        assert share['share_url'] == f'https://files.example.com/share/{share["token"]}'

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client, stored_file):
        resp = await client.post('/api/share/create', json={
            'file_id': stored_file.id, 'share_type': 'link', 'max_access_count': 1,
        })
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_bearer_token_rejected(self, client, owner, stored_file):
        resp = await client.post(
            '/api/share/create',
            json={'file_id': stored_file.id, 'share_type': 'link', 'max_access_count': 1},
            headers=_auth(owner, exp=int(time.time()) - 10),
        )
        assert resp.status_code == 401
        assert resp.json()['code'] == 'token_expired'

    @pytest.mark.asyncio
    async def test_missing_expiration_method_is_400(self, client, owner, stored_file):
        resp = await client.post(
            '/api/share/create',
            json={'file_id': stored_file.id, 'share_type': 'link'},
            headers=_auth(owner),
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body['error'] == 'Validation failed'
        assert any('expiration method' in d for d in body['details'])

    @pytest.mark.asyncio
    @pytest.mark.parametrize('minutes', [0, -5, 9, 525961])
    async def test_expiration_out_of_range_is_400(self, client, owner, stored_file, minutes):
        resp = await client.post(
            '/api/share/create',
            json={
                'file_id': stored_file.id,
                'share_type': 'link',
                'expiration_minutes': minutes,
            },
            headers=_auth(owner),
        )
        assert resp.status_code == 400
        assert resp.json()['details']

    @pytest.mark.asyncio
    async def test_unknown_file_is_404(self, client, owner):
        resp = await client.post(
            '/api/share/create',
            json={'file_id': str(uuid.uuid4()), 'share_type': 'link', 'max_access_count': 1},
            headers=_auth(owner),
        )
        assert resp.status_code == 404
        assert resp.json() == {'error': 'File not found'}

    @pytest.mark.asyncio
    async def test_duplicate_user_share_is_409(self, client, owner, recipient, stored_file):
        body = {
            'file_id': stored_file.id,
            'share_type': 'user',
            'recipient_identifier': 'Bob',
            'max_access_count': 2,
        }
        first = await client.post('/api/share/create', json=body, headers=_auth(owner))
        second = await client.post('/api/share/create', json=body, headers=_auth(owner))

        assert first.status_code == 201
        assert first.json()['share']['recipient']['id'] == recipient.user_id
        assert second.status_code == 409


# =====================================================================
# Public link access
# =====================================================================


class TestLinkAccess:

    @pytest.mark.asyncio
    async def test_preview_shows_metadata_without_consuming(self, client, owner, stored_file):
        share = await _create_link(client, owner, stored_file.id, max_access_count=1)

        resp = await client.get(f'/api/share/{share["token"]}')

        assert resp.status_code == 200
        body = resp.json()
        assert body['file']['filename'] == 'report.pdf'
        assert body['share']['remaining_accesses'] == 1
        assert 'token' not in body['share']

    @pytest.mark.asyncio
    async def test_download_until_exhausted(self, client, audit_log, owner, stored_file):
        share = await _create_link(client, owner, stored_file.id, max_access_count=3)
        url = f'/api/share/{share["token"]}/download'

        statuses = [(await client.post(url)).status_code for _ in range(4)]

        assert statuses == [200, 200, 200, 403]
        resp = await client.post(url)
        assert resp.json() == {'error': SHARE_DENIED_MESSAGE}
        assert len(audit_log.find('LINK_ACCESSED')) == 3

    @pytest.mark.asyncio
    async def test_download_returns_signed_url(self, client, owner, stored_file):
        share = await _create_link(client, owner, stored_file.id, expiration_minutes=60)

        resp = await client.post(f'/api/share/{share["token"]}/download')

        body = resp.json()
        assert body['download_url'].startswith('http://objects.test/')
        assert body['access_count'] == 1
        assert 'storage_key' not in body['file']

    @pytest.mark.asyncio
    @pytest.mark.parametrize('token', ['nope', '0' * 64])
    async def test_invalid_tokens_share_one_response(self, client, token):
        preview = await client.get(f'/api/share/{token}')
        download = await client.post(f'/api/share/{token}/download')

        assert preview.status_code == download.status_code == 403
        assert preview.json() == download.json() == {'error': SHARE_DENIED_MESSAGE}

    @pytest.mark.asyncio
    async def test_revoked_link_denied_immediately(self, client, owner, stored_file):
        share = await _create_link(client, owner, stored_file.id, max_access_count=5)

        first = await client.delete(f'/api/share/{share["id"]}', headers=_auth(owner))
        second = await client.delete(f'/api/share/{share["id"]}', headers=_auth(owner))
        denied = await client.post(f'/api/share/{share["token"]}/download')

        assert first.json() == {'modified_count': 1}
        assert second.json() == {'modified_count': 0}
        assert denied.status_code == 403


# =====================================================================
# Owner management
# =====================================================================


class TestOwnerManagement:

    @pytest.mark.asyncio
    async def test_list_and_revoke_all(self, client, owner, stored_file):
        for _ in range(3):
            await _create_link(client, owner, stored_file.id, max_access_count=2)

        listed = await client.get(f'/api/share/file/{stored_file.id}', headers=_auth(owner))
        revoked = await client.delete(
            f'/api/share/file/{stored_file.id}/all', headers=_auth(owner),
        )
        active = await client.get(
            f'/api/share/file/{stored_file.id}',
            params={'active_only': 'true'},
            headers=_auth(owner),
        )

        assert len(listed.json()['shares']) == 3
        assert revoked.json() == {'modified_count': 3}
        assert active.json() == {'shares': []}

    @pytest.mark.asyncio
    async def test_other_users_cannot_list(self, client, recipient, stored_file):
        resp = await client.get(f'/api/share/file/{stored_file.id}', headers=_auth(recipient))
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_malformed_file_id_is_400(self, client, owner):
        resp = await client.get('/api/share/file/not-a-uuid', headers=_auth(owner))
        assert resp.status_code == 400


# =====================================================================
# User shares
# =====================================================================


class TestUserShares:

    @pytest.mark.asyncio
    async def test_shared_with_me_and_download(self, client, owner, recipient, stored_file):
        await client.post('/api/share/create', json={
            'file_id': stored_file.id,
            'share_type': 'user',
            'recipient_identifier': 'bob@example.com',
            'max_access_count': 1,
        }, headers=_auth(owner))

        listed = await client.get('/api/share/shared-with-me', headers=_auth(recipient))
        first = await client.post(
            f'/api/share/user/{stored_file.id}/download', headers=_auth(recipient),
        )
        second = await client.post(
            f'/api/share/user/{stored_file.id}/download', headers=_auth(recipient),
        )

        assert listed.json()['shares'][0]['file']['id'] == stored_file.id
        assert first.status_code == 200
        assert second.status_code == 403

    @pytest.mark.asyncio
    async def test_user_download_requires_auth(self, client, stored_file):
        resp = await client.post(f'/api/share/user/{stored_file.id}/download')
        assert resp.status_code == 401


# =====================================================================
# Audit trail
# =====================================================================


class TestAuditRoute:

    @pytest.mark.asyncio
    async def test_owner_sees_newest_first(self, client, owner, stored_file):
        share = await _create_link(client, owner, stored_file.id, max_access_count=1)
        await client.post(f'/api/share/{share["token"]}/download')
        await client.post(f'/api/share/{share["token"]}/download')

        resp = await client.get(f'/api/audit/file/{stored_file.id}', headers=_auth(owner))

        actions = [log['action'] for log in resp.json()['logs']]
        assert actions == ['EXPIRED_LINK_ATTEMPT', 'LINK_ACCESSED', 'SHARE_CREATED']
        for log in resp.json()['logs']:
            assert share['token'] not in str(log['details'])

    @pytest.mark.asyncio
    async def test_limit(self, client, owner, stored_file):
        for _ in range(3):
            await _create_link(client, owner, stored_file.id, max_access_count=1)
        resp = await client.get(
            f'/api/audit/file/{stored_file.id}', params={'limit': 2}, headers=_auth(owner),
        )
        assert len(resp.json()['logs']) == 2

    @pytest.mark.asyncio
    async def test_non_owner_gets_404(self, client, recipient, stored_file):
        resp = await client.get(f'/api/audit/file/{stored_file.id}', headers=_auth(recipient))
        assert resp.status_code == 404


# =====================================================================
# Files
# =====================================================================


class TestFileRoutes:

    @pytest.mark.asyncio
    async def test_upload_rename_delete(self, client, audit_log, owner):
        uploaded = await client.post(
            '/api/files',
            params={'filename': 'plan.txt', 'category': 'Work'},
            content=b'step one',
            headers={**_auth(owner), 'Content-Type': 'text/plain'},
        )
        assert uploaded.status_code == 201
        file_id = uploaded.json()['file']['id']

        patched = await client.patch(
            f'/api/files/{file_id}',
            json={'filename': 'plan-v2.txt', 'category': 'Archive'},
            headers=_auth(owner),
        )
        assert patched.json()['file']['filename'] == 'plan-v2.txt'
        assert patched.json()['file']['category'] == 'Archive'

        listed = await client.get('/api/files', headers=_auth(owner))
        assert [f['id'] for f in listed.json()['files']] == [file_id]

        deleted = await client.delete(f'/api/files/{file_id}', headers=_auth(owner))
        assert deleted.json() == {'deleted': True}

        actions = [e.action.value for e in audit_log.find(resource_id=file_id)]
        assert actions == ['UPLOAD', 'NAME_CHANGE', 'CATEGORY_CHANGE', 'DELETE']

    @pytest.mark.asyncio
    async def test_empty_patch_is_400(self, client, owner, stored_file):
        resp = await client.patch(f'/api/files/{stored_file.id}', json={}, headers=_auth(owner))
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_owner_download(self, client, owner, stored_file):
        resp = await client.post(f'/api/files/{stored_file.id}/download', headers=_auth(owner))
        assert resp.status_code == 200
        assert 'download=report.pdf' in resp.json()['download_url']


# =====================================================================
# Outages and correlation
# =====================================================================


class UnavailableShareStore(InMemoryShareStore):
    async def get_by_token(self, token):
        raise TransientStoreError('share store unreachable')


class TestOutages:

    @pytest.mark.asyncio
    async def test_store_outage_is_503(self, audit_log, file_catalog, users, object_store):
        app = _make_app(UnavailableShareStore(), audit_log, file_catalog, users, object_store)
        async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as c:
            resp = await c.post(f'/api/share/{generate_share_token()}/download')

        assert resp.status_code == 503
        assert resp.headers['retry-after'] == '5'
        assert 'unreachable' not in resp.text

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client):
        resp = await client.get('/health', headers={'X-Request-ID': 'req-12345678'})
        assert resp.status_code == 200
        assert resp.headers['x-request-id'] == 'req-12345678'

    @pytest.mark.asyncio
    async def test_request_id_generated(self, client):
        resp = await client.get('/health', headers={'X-Request-ID': 'bad id!'})
        assert uuid.UUID(resp.headers['x-request-id'])


# =====================================================================
# Local mode
# =====================================================================


def _local_auth(user_id: str, username: str) -> dict[str, str]:
    payload = {
        'sub': user_id,
        'username': username,
        'email': f'{username}@example.com',
        'exp': int(time.time()) + 3600,
    }
    token = jwt.encode(payload, LOCAL_DEV_JWT_SECRET, algorithm='HS256')
    return {'Authorization': f'Bearer {token}'}


class TestLocalMode:

    @pytest.mark.asyncio
    async def test_user_share_between_signed_in_users(self):
        app = create_app(FileTraceSettings())
        alice = _local_auth(str(uuid.uuid4()), 'alice')
        bob = _local_auth(str(uuid.uuid4()), 'bob')

        async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as c:
            await c.get('/api/share/shared-with-me', headers=bob)
            uploaded = await c.post(
                '/api/files',
                params={'filename': 'notes.txt', 'category': 'Personal'},
                content=b'hello',
                headers={**alice, 'Content-Type': 'text/plain'},
            )
            file_id = uploaded.json()['file']['id']
            created = await c.post('/api/share/create', json={
                'file_id': file_id,
                'share_type': 'user',
                'recipient_identifier': 'bob',
                'max_access_count': 2,
            }, headers=alice)
            listed = await c.get('/api/share/shared-with-me', headers=bob)

        assert created.status_code == 201, created.text
        assert created.json()['share']['recipient']['username'] == 'bob'
        assert [s['file']['id'] for s in listed.json()['shares']] == [file_id]

    @pytest.mark.asyncio
    async def test_unseen_user_is_not_a_recipient(self):
        app = create_app(FileTraceSettings())
        alice = _local_auth(str(uuid.uuid4()), 'alice')

        async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as c:
            uploaded = await c.post(
                '/api/files',
                params={'filename': 'notes.txt', 'category': 'Personal'},
                content=b'hello',
                headers={**alice, 'Content-Type': 'text/plain'},
            )
            created = await c.post('/api/share/create', json={
                'file_id': uploaded.json()['file']['id'],
                'share_type': 'user',
                'recipient_identifier': 'carol',
            }, headers=alice)

        assert created.status_code == 404

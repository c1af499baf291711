import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from livechat.api.health import health
from livechat.core.config import settings


@pytest.mark.anyio
async def test_health():
    assert await health() == {"status": "ok", "service": settings.APP_NAME}


@pytest.mark.anyio
async def test_ready_db_ok(client):
    res = await client.get('/ready')
    assert res.status_code == 200
    assert res.json() == {"status": "ready"}


@pytest.mark.anyio
async def test_ready_fails_when_db_down(monkeypatch, client):
    async def broken_execute(self, *args, **kwargs):
        raise ConnectionError("database unreachable")

    monkeypatch.setattr(AsyncSession, 'execute', broken_execute)

    res = await client.get('/ready')
    assert res.status_code == 503
    assert res.json()["detail"] == "Not ready"


@pytest.mark.anyio
async def test_request_id_is_propagated(client):
    res = await client.get('/health', headers={'X-Request-ID': 'req-123'})
    assert res.status_code == 200
    assert res.headers['X-Request-ID'] == 'req-123'


@pytest.mark.anyio
async def test_error_responses_carry_request_id(client):
    res = await client.get('/api/projects/1/action-templates', headers={'Authorization': 'Bearer not-a-jwt'})
    assert res.status_code == 401
    body = res.json()
    assert body['detail'] == 'Could not validate credentials'
    assert body['request_id']

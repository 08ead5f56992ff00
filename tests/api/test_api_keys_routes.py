"""HTTP-level tests for tenant API key management."""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from wafplane.auth.api_keys import issue_api_key
from wafplane.exceptions import InternalError
from wafplane.models.api_key import APIKey
from wafplane.utils.security import hash_api_key

KEYS = "/api/v1/api-keys"
BANS = "/api/v1/bans"


class TestIssue:
    @pytest.mark.asyncio
    async def test_issued_key_authenticates_as_its_tenant(self, client, auth_headers):
        tenant = uuid.uuid4()

        resp = await client.post(KEYS, json={"name": "edge-sync"}, headers=auth_headers(tenant))

        assert resp.status_code == 201
        body = resp.json()
        raw = body["key"]
        assert raw.startswith("wpk_")
        assert body["apiKey"]["keyPrefix"] == raw[:8]
        assert body["apiKey"]["revoked"] is False

        created = await client.post(BANS, json={"ipAddress": "10.0.0.1"}, headers={"X-API-Key": raw})
        assert created.json()["ban"]["tenantId"] == str(tenant)

    @pytest.mark.asyncio
    async def test_only_the_hash_is_stored(self, client, session_factory, auth_headers):
        body = (await client.post(KEYS, json={"name": "ci"}, headers=auth_headers(uuid.uuid4()))).json()

        async with session_factory() as session:
            record = (await session.execute(select(APIKey))).scalar_one()
        assert record.key_hash == hash_api_key(body["key"])
        assert body["key"] not in record.key_hash
        assert "keyHash" not in body["apiKey"]

    @pytest.mark.asyncio
    async def test_expiry_round_trips(self, client, auth_headers):
        expires = datetime.now(timezone.utc) + timedelta(days=30)

        resp = await client.post(
            KEYS,
            json={"name": "temp", "expiresAt": expires.isoformat()},
            headers=auth_headers(uuid.uuid4()),
        )

        assert resp.status_code == 201
        assert datetime.fromisoformat(resp.json()["apiKey"]["expiresAt"]) == expires

    @pytest.mark.asyncio
    async def test_past_expiry_is_400(self, client, auth_headers):
        expires = datetime.now(timezone.utc) - timedelta(minutes=1)

        resp = await client.post(
            KEYS,
            json={"name": "stale", "expiresAt": expires.isoformat()},
            headers=auth_headers(uuid.uuid4()),
        )

        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_empty_name_is_rejected(self, client, auth_headers):
        resp = await client.post(KEYS, json={"name": ""}, headers=auth_headers(uuid.uuid4()))
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client):
        resp = await client.post(KEYS, json={"name": "edge-sync"})
        assert resp.status_code == 401


class TestListAndRevoke:
    @pytest.mark.asyncio
    async def test_list_is_tenant_scoped_and_newest_first(self, client, auth_headers):
        tenant_a, tenant_b = uuid.uuid4(), uuid.uuid4()
        await client.post(KEYS, json={"name": "first"}, headers=auth_headers(tenant_a))
        await client.post(KEYS, json={"name": "second"}, headers=auth_headers(tenant_a))
        await client.post(KEYS, json={"name": "other"}, headers=auth_headers(tenant_b))

        body = (await client.get(KEYS, headers=auth_headers(tenant_a))).json()

        assert [k["name"] for k in body["apiKeys"]] == ["second", "first"]

    @pytest.mark.asyncio
    async def test_revoked_key_stops_authenticating(self, client, auth_headers):
        tenant = uuid.uuid4()
        issued = (await client.post(KEYS, json={"name": "edge-sync"}, headers=auth_headers(tenant))).json()
        raw, key_id = issued["key"], issued["apiKey"]["id"]

        resp = await client.delete(f"{KEYS}/{key_id}", headers=auth_headers(tenant))

        assert resp.json() == {"id": key_id, "status": "revoked"}
        assert (await client.get(BANS, headers={"X-API-Key": raw})).status_code == 401
        listing = (await client.get(KEYS, headers=auth_headers(tenant))).json()
        assert listing["apiKeys"][0]["revoked"] is True

    @pytest.mark.asyncio
    async def test_revoke_under_other_tenant_is_404(self, client, auth_headers):
        owner = uuid.uuid4()
        issued = (await client.post(KEYS, json={"name": "edge-sync"}, headers=auth_headers(owner))).json()

        resp = await client.delete(f"{KEYS}/{issued['apiKey']['id']}", headers=auth_headers(uuid.uuid4()))

        assert resp.status_code == 404
        assert (await client.get(BANS, headers={"X-API-Key": issued["key"]})).status_code == 200

    @pytest.mark.asyncio
    async def test_revoke_unknown_id_is_404(self, client, auth_headers):
        resp = await client.delete(f"{KEYS}/999999", headers=auth_headers(uuid.uuid4()))
        assert resp.status_code == 404


class TestIssueFailures:
    @pytest.mark.asyncio
    async def test_driver_error_becomes_internal_error(self):
        factory = MagicMock(side_effect=OperationalError("INSERT", {}, Exception("db down")))

        with pytest.raises(InternalError):
            await issue_api_key(factory, str(uuid.uuid4()), "edge-sync")

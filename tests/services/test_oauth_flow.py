"""
Tests for the OAuth connection lifecycle service.
"""
import asyncio
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from sqlalchemy import func, select

from tradiesync.exceptions import (
    ExternalServiceError,
    InvalidOAuthStateError,
    NotConnectedError,
    ReconnectRequiredError,
    ValidationError,
)
from tradiesync.models import AccountingConnection
from tradiesync.services.accounting import myob, quickbooks, xero
from tradiesync.services.oauth_flow import RefreshLocks

from tests.helpers import OTHER_USER_ID, TEST_USER_ID

TOKEN_RESPONSE = {"access_token": "access-new", "refresh_token": "refresh-new", "expires_in": 1800}


def _state_from(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


async def _connection_count(db) -> int:
    return await db.scalar(select(func.count()).select_from(AccountingConnection))


class TestConnectAndCallback:
    @pytest.mark.asyncio
    async def test_connect_signs_user_and_provider(self, make_flow, signer):
        flow = make_flow("xero")
        state = _state_from(flow.connect(TEST_USER_ID))
        result = signer.verify(state)
        assert result.valid
        assert result.data["userId"] == TEST_USER_ID
        assert result.data["provider"] == "xero"

    @pytest.mark.asyncio
    async def test_callback_stores_encrypted_tokens(self, make_flow, fake_api, test_db, vault, clock):
        fake_api.add("POST", xero.XERO_TOKEN_URL, json=TOKEN_RESPONSE)
        fake_api.add("GET", xero.XERO_CONNECTIONS_URL, json=[{"tenantId": "t-1", "tenantName": "Smith Plumbing"}])
        flow = make_flow("xero")
        state = _state_from(flow.connect(TEST_USER_ID))

        result = await flow.callback("auth-code", state, {})

        assert result["success"] is True
        assert result["tenant_id"] == "t-1"
        assert result["tenant_name"] == "Smith Plumbing"

        connection = (await test_db.execute(select(AccountingConnection))).scalar_one()
        assert connection.user_id == TEST_USER_ID
        assert connection.provider == "xero"
        assert connection.sync_enabled is True
        assert connection.access_token_encrypted != "access-new"
        assert vault.decrypt(connection.access_token_encrypted) == "access-new"
        assert vault.decrypt(connection.refresh_token_encrypted) == "refresh-new"
        assert connection.token_expires_at == clock() + timedelta(seconds=1800)
        assert connection.connected_at == clock()

    @pytest.mark.asyncio
    async def test_callback_replaces_existing_connection(self, make_flow, make_connection, fake_api, test_db, vault):
        await make_connection("quickbooks", tenant_id="old-realm")
        fake_api.add("POST", quickbooks.QBO_TOKEN_URL, json=TOKEN_RESPONSE)
        flow = make_flow("quickbooks")
        state = _state_from(flow.connect(TEST_USER_ID))

        await flow.callback("auth-code", state, {"realmId": "new-realm"})

        assert await _connection_count(test_db) == 1
        connection = (await test_db.execute(select(AccountingConnection))).scalar_one()
        assert connection.tenant_id == "new-realm"
        assert vault.decrypt(connection.access_token_encrypted) == "access-new"

    @pytest.mark.asyncio
    async def test_callback_binds_to_signed_user(self, make_flow, fake_api, test_db):
        """The connection belongs to whoever started the flow."""
        fake_api.add("POST", myob.MYOB_TOKEN_URL, json=TOKEN_RESPONSE)
        fake_api.add("GET", myob.MYOB_COMPANY_FILES_URL, json=[
            {"Id": "cf-1", "Name": "Smith Plumbing", "Uri": "https://ar1.api.myob.com/accountright/cf-1"},
        ])
        flow = make_flow("myob")
        state = _state_from(flow.connect(OTHER_USER_ID))

        await flow.callback("auth-code", state, {})

        connection = (await test_db.execute(select(AccountingConnection))).scalar_one()
        assert connection.user_id == OTHER_USER_ID
        assert connection.tenant_uri == "https://ar1.api.myob.com/accountright/cf-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code, state", [(None, "s"), ("c", None), ("", "")])
    async def test_callback_requires_code_and_state(self, make_flow, code, state):
        with pytest.raises(ValidationError):
            await make_flow("xero").callback(code, state, {})

    @pytest.mark.asyncio
    async def test_callback_rejects_forged_state(self, make_flow, fake_api, test_db):
        with pytest.raises(InvalidOAuthStateError):
            await make_flow("xero").callback("auth-code", "Zm9yZ2VkLnN0YXRl", {})
        assert fake_api.requests == []
        assert await _connection_count(test_db) == 0

    @pytest.mark.asyncio
    async def test_callback_rejects_state_for_other_provider(self, make_flow, signer, fake_api):
        state = signer.sign({"userId": TEST_USER_ID, "provider": "myob"})
        with pytest.raises(InvalidOAuthStateError):
            await make_flow("xero").callback("auth-code", state, {})
        assert fake_api.requests == []

    @pytest.mark.asyncio
    async def test_callback_rejects_state_without_user(self, make_flow, signer):
        state = signer.sign({"provider": "xero"})
        with pytest.raises(InvalidOAuthStateError):
            await make_flow("xero").callback("auth-code", state, {})

    @pytest.mark.asyncio
    async def test_failed_code_exchange(self, make_flow, fake_api, test_db):
        fake_api.add("POST", xero.XERO_TOKEN_URL, status=400, json={"error": "invalid_grant"})
        flow = make_flow("xero")
        state = _state_from(flow.connect(TEST_USER_ID))

        with pytest.raises(ExternalServiceError) as exc:
            await flow.callback("auth-code", state, {})
        assert exc.value.detail == "Xero: Failed to exchange authorization code"
        assert await _connection_count(test_db) == 0

    @pytest.mark.asyncio
    async def test_unreadable_company_files_is_upstream_error(self, make_flow, fake_api, test_db):
        fake_api.add("POST", myob.MYOB_TOKEN_URL, json=TOKEN_RESPONSE)
        fake_api.add(
            "GET", myob.MYOB_COMPANY_FILES_URL,
            handler=lambda request: httpx.Response(200, text="<html>maintenance</html>"),
        )
        flow = make_flow("myob")
        state = _state_from(flow.connect(TEST_USER_ID))

        with pytest.raises(ExternalServiceError) as exc:
            await flow.callback("auth-code", state, {})
        assert exc.value.status_code == 502
        assert await _connection_count(test_db) == 0

    @pytest.mark.asyncio
    async def test_missing_realm_is_validation_error(self, make_flow, fake_api, test_db):
        fake_api.add("POST", quickbooks.QBO_TOKEN_URL, json=TOKEN_RESPONSE)
        flow = make_flow("quickbooks")
        state = _state_from(flow.connect(TEST_USER_ID))

        with pytest.raises(ValidationError):
            await flow.callback("auth-code", state, {})
        assert await _connection_count(test_db) == 0


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_rotates_tokens(self, make_flow, make_connection, fake_api, vault, clock):
        connection = await make_connection("xero")
        fake_api.add("POST", xero.XERO_TOKEN_URL, json=TOKEN_RESPONSE)
        clock.advance(minutes=10)

        refreshed = await make_flow("xero").refresh(TEST_USER_ID)

        assert refreshed.id == connection.id
        assert vault.decrypt(refreshed.access_token_encrypted) == "access-new"
        assert vault.decrypt(refreshed.refresh_token_encrypted) == "refresh-new"
        assert refreshed.token_expires_at == clock() + timedelta(seconds=1800)

    @pytest.mark.asyncio
    async def test_refresh_without_connection(self, make_flow):
        with pytest.raises(NotConnectedError):
            await make_flow("xero").refresh(TEST_USER_ID)

    @pytest.mark.asyncio
    async def test_rejected_refresh_clears_connection(self, make_flow, make_connection, fake_api, test_db):
        await make_connection("myob")
        fake_api.add("POST", myob.MYOB_TOKEN_URL, status=400, json={"error": "invalid_grant"})

        with pytest.raises(ReconnectRequiredError) as exc:
            await make_flow("myob").refresh(TEST_USER_ID)
        assert exc.value.status_code == 401

        connection = (await test_db.execute(select(AccountingConnection))).scalar_one()
        assert connection.access_token_encrypted is None
        assert connection.refresh_token_encrypted is None
        assert connection.tenant_id is None
        assert connection.sync_enabled is False

    @pytest.mark.asyncio
    async def test_undecryptable_refresh_token_clears_connection(self, make_flow, make_connection, fake_api, test_db):
        connection = await make_connection("quickbooks")
        connection.refresh_token_encrypted = "not-a-vault-ciphertext"
        await test_db.commit()

        with pytest.raises(ReconnectRequiredError):
            await make_flow("quickbooks").refresh(TEST_USER_ID)

        assert fake_api.requests == []
        assert connection.sync_enabled is False
        assert connection.access_token_encrypted is None

    @pytest.mark.asyncio
    async def test_transport_failure_keeps_credentials(self, make_flow, make_connection, fake_api, vault):
        connection = await make_connection("xero")

        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        fake_api.add("POST", xero.XERO_TOKEN_URL, handler=unreachable)

        with pytest.raises(ExternalServiceError):
            await make_flow("xero").refresh(TEST_USER_ID)

        assert connection.sync_enabled is True
        assert vault.decrypt(connection.refresh_token_encrypted) == "refresh-token-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_token_endpoint_outage_keeps_credentials(self, make_flow, make_connection, fake_api, vault, status):
        connection = await make_connection("xero")
        fake_api.add("POST", xero.XERO_TOKEN_URL, status=status, json={"error": "temporarily_unavailable"})

        with pytest.raises(ExternalServiceError) as exc:
            await make_flow("xero").refresh(TEST_USER_ID)
        assert exc.value.status_code == 502

        assert connection.sync_enabled is True
        assert connection.tenant_id == "tenant-1"
        assert vault.decrypt(connection.access_token_encrypted) == "access-token-1"
        assert vault.decrypt(connection.refresh_token_encrypted) == "refresh-token-1"

    @pytest.mark.asyncio
    async def test_unauthorized_client_clears_connection(self, make_flow, make_connection, fake_api):
        connection = await make_connection("quickbooks")
        fake_api.add("POST", quickbooks.QBO_TOKEN_URL, status=401, json={"error": "invalid_client"})

        with pytest.raises(ReconnectRequiredError):
            await make_flow("quickbooks").refresh(TEST_USER_ID)

        assert connection.sync_enabled is False
        assert connection.refresh_token_encrypted is None


class TestGetCredentials:
    @pytest.mark.asyncio
    async def test_valid_token_used_without_refresh(self, make_flow, make_connection, fake_api):
        await make_connection("xero", tenant_id="t-1")

        credentials = await make_flow("xero").get_credentials(TEST_USER_ID)

        assert credentials.access_token == "access-token-1"
        assert credentials.tenant_id == "t-1"
        assert fake_api.requests == []

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_first(self, make_flow, make_connection, fake_api, clock):
        await make_connection("xero", expires_in=60)
        fake_api.add("POST", xero.XERO_TOKEN_URL, json=TOKEN_RESPONSE)
        clock.advance(minutes=5)

        credentials = await make_flow("xero").get_credentials(TEST_USER_ID)

        assert credentials.access_token == "access-new"
        assert len(fake_api.calls("POST", xero.XERO_TOKEN_URL)) == 1

    @pytest.mark.asyncio
    async def test_not_connected(self, make_flow):
        with pytest.raises(NotConnectedError) as exc:
            await make_flow("myob").get_credentials(TEST_USER_ID)
        assert exc.value.detail == "MYOB not connected. Please connect MYOB first."

    @pytest.mark.asyncio
    async def test_sync_disabled_counts_as_not_connected(self, make_flow, make_connection, test_db):
        connection = await make_connection("xero")
        connection.sync_enabled = False
        await test_db.commit()
        with pytest.raises(NotConnectedError):
            await make_flow("xero").get_credentials(TEST_USER_ID)

    @pytest.mark.asyncio
    async def test_credentials_scoped_to_user(self, make_flow, make_connection):
        await make_connection("xero", user_id=OTHER_USER_ID)
        with pytest.raises(NotConnectedError):
            await make_flow("xero").get_credentials(TEST_USER_ID)

    @pytest.mark.asyncio
    async def test_undecryptable_access_token_clears_connection(self, make_flow, make_connection, test_db):
        connection = await make_connection("xero")
        connection.access_token_encrypted = "tampered"
        await test_db.commit()

        with pytest.raises(ReconnectRequiredError):
            await make_flow("xero").get_credentials(TEST_USER_ID)
        assert connection.sync_enabled is False

    @pytest.mark.asyncio
    async def test_concurrent_expired_requests_refresh_once(
        self, make_flow, make_connection, fake_api, session_factory, clock
    ):
        await make_connection("xero", expires_in=60)
        clock.advance(minutes=5)
        fake_api.add("POST", xero.XERO_TOKEN_URL, json=TOKEN_RESPONSE)
        locks = RefreshLocks()

        async with session_factory() as first_db, session_factory() as second_db:
            first = make_flow("xero", locks=locks, db=first_db)
            second = make_flow("xero", locks=locks, db=second_db)
            results = await asyncio.gather(
                first.get_credentials(TEST_USER_ID),
                second.get_credentials(TEST_USER_ID),
            )

        assert [c.access_token for c in results] == ["access-new", "access-new"]
        assert len(fake_api.calls("POST", xero.XERO_TOKEN_URL)) == 1
        assert len(locks) == 0


class TestRefreshLocks:
    def test_same_key_shares_lock_while_held(self):
        locks = RefreshLocks()
        lock = locks.lock_for(TEST_USER_ID, "xero")
        assert locks.lock_for(TEST_USER_ID, "xero") is lock
        assert locks.lock_for(TEST_USER_ID, "myob") is not lock
        assert locks.lock_for(OTHER_USER_ID, "xero") is not lock

    @pytest.mark.asyncio
    async def test_released_locks_are_dropped(self, make_flow, make_connection, fake_api):
        await make_connection("xero")
        fake_api.add("POST", xero.XERO_TOKEN_URL, json=TOKEN_RESPONSE)
        locks = RefreshLocks()

        await make_flow("xero", locks=locks).refresh(TEST_USER_ID)

        assert len(locks) == 0


class TestDisconnectAndStatus:
    @pytest.mark.asyncio
    async def test_disconnect_clears_credentials(self, make_flow, make_connection, test_db):
        connection = await make_connection("quickbooks")

        await make_flow("quickbooks").disconnect(TEST_USER_ID)

        await test_db.refresh(connection)
        assert connection.tenant_id is None
        assert connection.tenant_name is None
        assert connection.access_token_encrypted is None
        assert connection.refresh_token_encrypted is None
        assert connection.token_expires_at is None
        assert connection.sync_enabled is False

    @pytest.mark.asyncio
    async def test_disconnect_without_connection_is_noop(self, make_flow, test_db):
        await make_flow("xero").disconnect(TEST_USER_ID)
        assert await _connection_count(test_db) == 0

    @pytest.mark.asyncio
    async def test_status_connected(self, make_flow, make_connection, clock):
        await make_connection("xero", tenant_id="t-1")
        status = await make_flow("xero").status(TEST_USER_ID)
        assert status["connected"] is True
        assert status["tenant_id"] == "t-1"
        assert status["sync_enabled"] is True
        assert status["token_expired"] is False

    @pytest.mark.asyncio
    async def test_status_reports_expiry(self, make_flow, make_connection, clock):
        await make_connection("xero", expires_in=60)
        clock.advance(minutes=2)
        status = await make_flow("xero").status(TEST_USER_ID)
        assert status["token_expired"] is True

    @pytest.mark.asyncio
    async def test_status_disconnected(self, make_flow):
        status = await make_flow("myob").status(TEST_USER_ID)
        assert status["connected"] is False
        assert status["tenant_id"] is None
        assert status["sync_enabled"] is False

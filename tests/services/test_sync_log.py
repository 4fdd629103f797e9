"""
Tests for the sync log.
"""
from datetime import datetime

import pytest

from tradiesync.services import sync_log

from tests.helpers import OTHER_USER_ID, TEST_USER_ID


class TestSyncLog:
    @pytest.mark.asyncio
    async def test_record_is_staged_until_commit(self, test_db):
        entry = sync_log.record(test_db, TEST_USER_ID, "xero", "client", "c-1", "to_xero", "success")
        assert entry in test_db.new
        await test_db.commit()
        assert [e.entity_id for e in await sync_log.recent(test_db, TEST_USER_ID)] == ["c-1"]

    @pytest.mark.asyncio
    async def test_error_message_truncated(self, test_db):
        entry = sync_log.record(
            test_db, TEST_USER_ID, "myob", "invoice", "i-1", "to_myob", "error", "x" * 2000
        )
        assert len(entry.error_message) == 500

    @pytest.mark.asyncio
    async def test_recent_newest_first_and_filtered(self, test_db):
        for index, provider in enumerate(["xero", "quickbooks", "xero"]):
            entry = sync_log.record(
                test_db, TEST_USER_ID, provider, "client", f"c-{index}", f"to_{provider}", "success"
            )
            entry.created_at = datetime(2026, 3, 2, 9, index)
        sync_log.record(test_db, OTHER_USER_ID, "xero", "client", "c-other", "to_xero", "success")
        await test_db.commit()

        entries = await sync_log.recent(test_db, TEST_USER_ID, provider="xero")
        assert [e.entity_id for e in entries] == ["c-2", "c-0"]

        everything = await sync_log.recent(test_db, TEST_USER_ID)
        assert len(everything) == 3

    @pytest.mark.asyncio
    async def test_recent_limit(self, test_db):
        for index in range(5):
            sync_log.record(test_db, TEST_USER_ID, "xero", "client", f"c-{index}", "to_xero", "success")
        await test_db.commit()
        assert len(await sync_log.recent(test_db, TEST_USER_ID, limit=2)) == 2

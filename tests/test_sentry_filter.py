"""Tests for Sentry event scrubbing."""
from tradiesync.core.sentry import FILTERED, capture_exception, filter_sensitive_data


class TestFilterSensitiveData:
    def test_auth_headers_filtered(self):
        event = {"request": {"headers": {"Authorization": "Bearer abc", "X-MYOBAPI-KEY": "k", "Accept": "json"}}}
        headers = filter_sensitive_data(event, {})["request"]["headers"]
        assert headers == {"Authorization": FILTERED, "X-MYOBAPI-KEY": FILTERED, "Accept": "json"}

    def test_oauth_query_string_filtered(self):
        event = {"request": {"query_string": "code=abc123&state=signed&realmId=9130350"}}
        query = filter_sensitive_data(event, {})["request"]["query_string"]
        assert query == f"code={FILTERED}&state={FILTERED}&realmId=9130350"

    def test_bank_details_filtered_in_body(self):
        event = {"request": {"data": {
            "bank_account_number": "12345678",
            "payment_terms": 30,
            "nested": [{"refresh_token": "r1", "tenant_id": "t-1"}],
        }}}
        data = filter_sensitive_data(event, {})["request"]["data"]
        assert data["bank_account_number"] == FILTERED
        assert data["payment_terms"] == 30
        assert data["nested"] == [{"refresh_token": FILTERED, "tenant_id": "t-1"}]

    def test_cookies_and_extra_filtered(self):
        event = {"request": {"cookies": {"session": "s"}}, "extra": {"access_token": "a", "path": "/x"}}
        result = filter_sensitive_data(event, {})
        assert result["request"]["cookies"] == FILTERED
        assert result["extra"] == {"access_token": FILTERED, "path": "/x"}

    def test_event_without_request_passes_through(self):
        event = {"message": "hello"}
        assert filter_sensitive_data(event, {}) == {"message": "hello"}


def test_capture_without_init_is_noop():
    assert capture_exception(RuntimeError("boom")) is None

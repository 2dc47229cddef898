"""Tests for the HTTP remote fetcher."""

from unittest.mock import MagicMock, PropertyMock

import pytest
import requests
from urllib3.exceptions import ReadTimeoutError

from src.ingest.fetcher import FetchError, FetchTimeoutError, RemoteFetcher


URL = "https://example.org/carriers.csv"


def mock_response(status=200, content=b"", headers=None, reason="OK"):
    response = MagicMock()
    response.status_code = status
    response.ok = status < 400
    response.reason = reason
    response.content = content
    response.headers = headers or {}
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def fetcher(session):
    return RemoteFetcher(user_agent="TestAgent/1.0", probe_timeout=5, retrieve_timeout=7, session=session)


class TestProbe:

    def test_probe_reports_freshness_headers(self, fetcher, session):
        session.head.return_value = mock_response(headers={
            "ETag": '"abc"',
            "Last-Modified": "Wed, 01 Jan 2026 00:00:00 GMT",
            "Content-Length": "1234",
        })

        probe = fetcher.probe(URL)

        assert probe.ok
        assert probe.etag == '"abc"'
        assert probe.last_modified == "Wed, 01 Jan 2026 00:00:00 GMT"
        assert probe.content_length == "1234"

    def test_probe_sends_head_with_redirects_and_timeout(self, fetcher, session):
        session.head.return_value = mock_response()

        fetcher.probe(URL)

        _, kwargs = session.head.call_args
        assert kwargs["allow_redirects"] is True
        assert kwargs["timeout"][1] == 5
        assert kwargs["headers"]["User-Agent"] == "TestAgent/1.0"

    def test_probe_returns_error_status(self, fetcher, session):
        session.head.return_value = mock_response(status=503, reason="Service Unavailable")

        probe = fetcher.probe(URL)

        assert probe.status == 503
        assert not probe.ok

    @pytest.mark.parametrize("error", [
        requests.ConnectionError("refused"),
        requests.ReadTimeout("slow"),
    ])
    def test_probe_network_failure_is_unavailable(self, fetcher, session, error):
        session.head.side_effect = error

        assert fetcher.probe(URL) is None


class TestRetrieve:

    def test_retrieve_returns_body_and_headers(self, fetcher, session):
        session.get.return_value = mock_response(content=b"a,b\n1,2\n", headers={"ETag": '"v9"'})

        result = fetcher.retrieve(URL)

        assert result.content == b"a,b\n1,2\n"
        assert result.etag == '"v9"'
        assert result.content_length is None
        _, kwargs = session.get.call_args
        assert kwargs["timeout"][1] == 7
        assert kwargs["allow_redirects"] is True

    def test_retrieve_timeout_override(self, fetcher, session):
        session.get.return_value = mock_response(content=b"x")

        fetcher.retrieve(URL, timeout=60)

        _, kwargs = session.get.call_args
        assert kwargs["timeout"][1] == 60

    def test_http_error_carries_status_and_reason(self, fetcher, session):
        session.get.return_value = mock_response(status=404, reason="Not Found")

        with pytest.raises(FetchError) as exc:
            fetcher.retrieve(URL)

        assert exc.value.status == 404
        assert "HTTP 404 Not Found" in str(exc.value)

    def test_timeout_raises_fetch_timeout(self, fetcher, session):
        session.get.side_effect = requests.ReadTimeout("slow")

        with pytest.raises(FetchTimeoutError) as exc:
            fetcher.retrieve(URL)

        assert isinstance(exc.value, TimeoutError)
        assert isinstance(exc.value, FetchError)

    def test_timeout_while_reading_body_raises_fetch_timeout(self, fetcher, session):
        response = mock_response()
        type(response).content = PropertyMock(
            side_effect=requests.ConnectionError(ReadTimeoutError(None, URL, "Read timed out."))
        )
        session.get.return_value = response

        with pytest.raises(FetchTimeoutError) as exc:
            fetcher.retrieve(URL, timeout=3)

        assert "timed out after 3s" in str(exc.value)

    def test_connection_error_raises_fetch_error(self, fetcher, session):
        session.get.side_effect = requests.ConnectionError("refused")

        with pytest.raises(FetchError) as exc:
            fetcher.retrieve(URL)

        assert not isinstance(exc.value, FetchTimeoutError)
        assert exc.value.url == URL

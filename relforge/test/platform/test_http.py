from __future__ import annotations

from relforge.core.result import Err, Ok
from relforge.platform.http import HttpClient, HttpError, MockHttpClient, RealHttpClient


def test_http_error_str() -> None:
    assert (
        str(HttpError(url="https://feed.test/x", status=500, message="Internal Error"))
        == "HTTP 500: Internal Error (https://feed.test/x)"
    )
    assert (
        str(HttpError(url="https://feed.test/x", status=0, message="Connection refused"))
        == "Connection refused (https://feed.test/x)"
    )


def test_http_error_not_found() -> None:
    assert HttpError(url="u", status=404, message="Not Found").not_found
    assert not HttpError(url="u", status=0, message="timed out").not_found


def test_clients_satisfy_protocol() -> None:
    assert isinstance(MockHttpClient(), HttpClient)
    assert isinstance(RealHttpClient(), HttpClient)


def test_mock_client_answers_and_records() -> None:
    client = MockHttpClient()
    client.set_json("https://feed.test/a", {"versions": ["1.0.0"]})
    client.set_json("https://feed.test/b", HttpError("https://feed.test/b", 401, "Unauthorized"))

    assert client.get_json("https://feed.test/a") == Ok({"versions": ["1.0.0"]})
    denied = client.get_json("https://feed.test/b")
    assert isinstance(denied, Err)
    assert denied.error.status == 401
    missing = client.get_json("https://feed.test/c")
    assert isinstance(missing, Err)
    assert missing.error.not_found
    assert [url for _, url in client.calls] == [
        "https://feed.test/a",
        "https://feed.test/b",
        "https://feed.test/c",
    ]


def test_real_client_reports_bad_url() -> None:
    result = RealHttpClient(timeout=1.0).get_json("not-a-url")
    assert isinstance(result, Err)
    assert result.error.status == 0

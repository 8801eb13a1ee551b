"""Tests for the JSON-RPC transport."""

import base64
import http.client
import io
import json
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

import base58
import pytest

from perps_errors import TransportError
from perps_rpc import SolanaRpc


def _response(body: dict) -> MagicMock:
    resp = MagicMock()
    resp.read.return_value = json.dumps(body).encode("utf-8")
    resp.__enter__.return_value = resp
    return resp


def _http_error(code: int) -> HTTPError:
    return HTTPError("http://rpc", code, "error", {}, io.BytesIO(b""))


def _sent_payload(mock_urlopen, call=0) -> dict:
    request = mock_urlopen.call_args_list[call][0][0]
    return json.loads(request.data.decode("utf-8"))


@patch("perps_rpc.time.sleep")
@patch("perps_rpc.urlopen")
def test_call_returns_result(mock_urlopen, mock_sleep):
    mock_urlopen.return_value = _response({"jsonrpc": "2.0", "id": 1, "result": 42})
    assert SolanaRpc("http://rpc").call("getSlot", []) == 42
    assert _sent_payload(mock_urlopen)["method"] == "getSlot"
    mock_sleep.assert_not_called()


@patch("perps_rpc.time.sleep")
@patch("perps_rpc.urlopen")
def test_rpc_error_payload_raises_without_retry(mock_urlopen, mock_sleep):
    mock_urlopen.return_value = _response({"error": {"code": -32600, "message": "bad"}})
    with pytest.raises(TransportError, match="RPC error"):
        SolanaRpc("http://rpc").call("getSlot", [])
    assert mock_urlopen.call_count == 1


@patch("perps_rpc.time.sleep")
@patch("perps_rpc.urlopen")
def test_rate_limit_is_retried_with_backoff(mock_urlopen, mock_sleep):
    mock_urlopen.side_effect = [_http_error(429), _http_error(429), _response({"result": "ok"})]
    assert SolanaRpc("http://rpc").call("getSlot", []) == "ok"
    assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 2]


@patch("perps_rpc.time.sleep")
@patch("perps_rpc.urlopen")
def test_exhausted_retries_raise_transport_error(mock_urlopen, mock_sleep):
    mock_urlopen.side_effect = URLError("connection refused")
    with pytest.raises(TransportError, match="giving up after 3 attempts"):
        SolanaRpc("http://rpc", max_retries=3).call("getSlot", [])
    assert mock_urlopen.call_count == 3


@patch("perps_rpc.time.sleep")
@patch("perps_rpc.urlopen")
def test_truncated_response_is_retried(mock_urlopen, mock_sleep):
    truncated = MagicMock()
    truncated.read.side_effect = http.client.IncompleteRead(b"")
    truncated.__enter__.return_value = truncated
    mock_urlopen.side_effect = [truncated, _response({"result": "ok"})]
    assert SolanaRpc("http://rpc").call("getSlot", []) == "ok"
    assert mock_urlopen.call_count == 2


@patch("perps_rpc.time.sleep")
@patch("perps_rpc.urlopen")
def test_protocol_errors_exhaust_into_transport_error(mock_urlopen, mock_sleep):
    mock_urlopen.side_effect = http.client.IncompleteRead(b"")
    with pytest.raises(TransportError, match="giving up after 3 attempts"):
        SolanaRpc("http://rpc", max_retries=3).call("getProgramAccounts", [])
    assert mock_urlopen.call_count == 3


@patch("perps_rpc.time.sleep")
@patch("perps_rpc.urlopen")
def test_bad_status_line_is_retried(mock_urlopen, mock_sleep):
    mock_urlopen.side_effect = [http.client.BadStatusLine("garbage"), _response({"result": 7})]
    assert SolanaRpc("http://rpc").call("getSlot", []) == 7


@patch("perps_rpc.time.sleep")
@patch("perps_rpc.urlopen")
def test_non_utf8_body_raises_transport_error(mock_urlopen, mock_sleep):
    resp = MagicMock()
    resp.read.return_value = b"\xff\xfe\x00"
    resp.__enter__.return_value = resp
    mock_urlopen.return_value = resp
    with pytest.raises(TransportError, match="invalid JSON response"):
        SolanaRpc("http://rpc").call("getSlot", [])
    assert mock_urlopen.call_count == 1


@patch("perps_rpc.urlopen")
def test_get_program_accounts_filters_on_discriminator(mock_urlopen):
    discriminator = bytes(range(8))
    data = discriminator + b"payload"
    mock_urlopen.return_value = _response({"result": [
        {"pubkey": "Addr1", "account": {"data": [base64.b64encode(data).decode(), "base64"]}},
    ]})

    accounts = SolanaRpc("http://rpc").get_program_accounts("Program1", discriminator)

    assert accounts == [("Addr1", data)]
    params = _sent_payload(mock_urlopen)["params"]
    assert params[0] == "Program1"
    assert params[1]["encoding"] == "base64"
    memcmp = params[1]["filters"][0]["memcmp"]
    assert memcmp["offset"] == 0
    assert base58.b58decode(memcmp["bytes"]) == discriminator


@patch("perps_rpc.urlopen")
def test_get_program_accounts_rejects_malformed_entries(mock_urlopen):
    mock_urlopen.return_value = _response({"result": [{"pubkey": "Addr1"}]})
    with pytest.raises(TransportError, match="malformed"):
        SolanaRpc("http://rpc").get_program_accounts("Program1", bytes(8))


@patch("perps_rpc.urlopen")
def test_get_account_data(mock_urlopen):
    mock_urlopen.return_value = _response({"result": {"context": {"slot": 1}, "value": {
        "data": [base64.b64encode(b"oracle").decode(), "base64"],
    }}})
    assert SolanaRpc("http://rpc").get_account_data("Oracle1") == b"oracle"


@patch("perps_rpc.urlopen")
def test_get_account_data_missing_account(mock_urlopen):
    mock_urlopen.return_value = _response({"result": {"context": {"slot": 1}, "value": None}})
    with pytest.raises(TransportError, match="not found"):
        SolanaRpc("http://rpc").get_account_data("Oracle1")

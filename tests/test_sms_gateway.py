"""
SMSGateway tests — mocked requests.Session, no network.
"""

from unittest.mock import MagicMock

import pytest
import requests

from occurrence_tracker.integrations.sms_gateway import (
    SMSGateway,
    mask_mobile_number,
    normalize_mobile_number,
    to_international,
    validate_mobile_number,
)


def _response(status_code, body=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    if body is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = body
    return resp


@pytest.fixture()
def configured(app):
    """Point the gateway at a fake provider URL for one test."""
    saved = {k: app.config.get(k) for k in ("SMS_GATEWAY_URL", "SMS_GATEWAY_API_KEY")}
    app.config["SMS_GATEWAY_URL"] = "https://sms.example.test/send"
    app.config["SMS_GATEWAY_API_KEY"] = "secret-key"
    yield
    app.config.update(saved)


def _gateway(*responses):
    session = MagicMock()
    session.post.side_effect = list(responses)
    sleep = MagicMock()
    return SMSGateway(session=session, sleep=sleep), session, sleep


class TestNumberHelpers:
    @pytest.mark.parametrize("raw", ["0501234567", "050-123-4567", "050 123 4567"])
    def test_valid_numbers(self, raw):
        assert validate_mobile_number(raw)

    @pytest.mark.parametrize("raw", [None, "", "12345", "0601234567", "05012345678", "+92501234567"])
    def test_invalid_numbers(self, raw):
        assert not validate_mobile_number(raw)

    def test_normalize_and_international(self):
        assert normalize_mobile_number("(050) 123-4567") == "0501234567"
        assert to_international("050-123-4567", "92") == "920501234567"

    def test_validation_does_not_log(self, caplog):
        with caplog.at_level("DEBUG", logger="occurrence_tracker.integrations.sms_gateway"):
            assert not validate_mobile_number("0601234567")
        assert caplog.records == []

    @pytest.mark.parametrize("raw,masked", [
        ("050-123-4567", "******4567"),
        ("123", "***"),
        (None, ""),
    ])
    def test_mask(self, raw, masked):
        assert mask_mobile_number(raw) == masked


class TestSendSms:
    def test_dev_mode_logs_only(self):
        gateway, session, _ = _gateway()
        result = gateway.send_sms("0501234567", "Occurrence OCC25-0001 referred")

        assert result.ok
        assert result.status_code is None
        session.post.assert_not_called()

    def test_invalid_number_not_sent(self, configured):
        gateway, session, _ = _gateway()
        result = gateway.send_sms("06011112345", "hello")

        assert not result.ok
        assert "Invalid mobile number" in result.error
        assert "0601" not in result.error
        session.post.assert_not_called()

    def test_success_posts_payload(self, configured):
        gateway, session, sleep = _gateway(_response(200, {"id": "msg-42"}))
        result = gateway.send_sms("050-123-4567", "hello")

        assert result.ok
        assert result.status_code == 200
        assert result.provider_id == "msg-42"
        args, kwargs = session.post.call_args
        assert args[0] == "https://sms.example.test/send"
        assert kwargs["json"]["to"] == "920501234567"
        assert kwargs["json"]["from"] == "OCCTRACK"
        assert kwargs["headers"]["Authorization"] == "Bearer secret-key"
        sleep.assert_not_called()

    def test_non_json_success_body(self, configured):
        gateway, _, _ = _gateway(_response(202))
        result = gateway.send_sms("0501234567", "hello")
        assert result.ok
        assert result.provider_id is None

    def test_retries_on_server_error(self, configured):
        gateway, session, sleep = _gateway(
            _response(503, text="busy"), _response(502, text="bad gateway"), _response(200, {}),
        )
        result = gateway.send_sms("0501234567", "hello")

        assert result.ok
        assert session.post.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1, 4]

    def test_gives_up_after_retries(self, configured):
        gateway, session, _ = _gateway(*[_response(500, text="down")] * 3)
        result = gateway.send_sms("0501234567", "hello")

        assert not result.ok
        assert result.status_code == 500
        assert result.error.startswith("HTTP 500")
        assert session.post.call_count == 3

    def test_client_error_not_retried(self, configured):
        gateway, session, sleep = _gateway(_response(401, text="unauthorized"))
        result = gateway.send_sms("0501234567", "hello")

        assert not result.ok
        assert result.status_code == 401
        assert session.post.call_count == 1
        sleep.assert_not_called()

    def test_network_error_retried_then_reported(self, configured):
        gateway, session, _ = _gateway(
            requests.ConnectionError("refused"),
            requests.Timeout("timed out"),
            requests.ConnectionError("refused again"),
        )
        result = gateway.send_sms("0501234567", "hello")

        assert not result.ok
        assert result.status_code is None
        assert "refused again" in result.error
        assert session.post.call_count == 3

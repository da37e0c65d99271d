"""
SMS Gateway — HTTP text-message provider integration.

All outbound SMS calls go through this class.
Direct `requests` calls in services are FORBIDDEN.

Behaviour:
  - Bearer API key injected from SMS_GATEWAY_API_KEY
  - Retry: max 2 attempts after the first, backoff (1 s → 4 s) on network
    errors and HTTP 5xx; 4xx responses are not retried
  - Timeout: SMS_GATEWAY_TIMEOUT seconds (default 15)
  - Never raises: every outcome is returned as a GatewayResult
  - Log-only mode when SMS_GATEWAY_URL is not configured (dev/test)

Mobile numbers are validated as local 10-digit numbers starting with 05 and
prefixed with SMS_COUNTRY_CODE before sending.

Testability: pass a mock `session` to SMSGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import re
import time

import requests
from flask import current_app

logger = logging.getLogger(__name__)

# ── Retry constants ────────────────────────────────────────────────────────
_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = [1, 4]

_DEFAULT_TIMEOUT = 15

_LOCAL_MOBILE_RE = re.compile(r"^05\d{8}$")


def normalize_mobile_number(mobile_no: str | None) -> str:
    """Strip everything except digits."""
    return re.sub(r"\D", "", mobile_no or "")


def validate_mobile_number(mobile_no: str | None) -> bool:
    """True for a well-formed local mobile number: 10 digits starting with 05."""
    if not mobile_no:
        return False
    return bool(_LOCAL_MOBILE_RE.match(normalize_mobile_number(mobile_no)))


def mask_mobile_number(mobile_no: str | None) -> str:
    """Digits of ``mobile_no`` with all but the last four replaced by *."""
    digits = normalize_mobile_number(mobile_no)
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]


def to_international(mobile_no: str, country_code: str) -> str:
    """Prefix the country code to a validated local number."""
    return f"{country_code}{normalize_mobile_number(mobile_no)}"


class GatewayResult:
    """Structured return value from SMSGateway calls.

    Attributes:
        ok:             True if the message was accepted (HTTP 2xx, or log-only mode).
        status_code:    HTTP status code (None if network-level failure or log-only).
        error:          Human-readable error message or None.
        duration_ms:    Round-trip latency in milliseconds.
        provider_id:    Message id returned by the provider, if any.
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        error: str | None,
        duration_ms: int,
        provider_id: str | None = None,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.error = error
        self.duration_ms = duration_ms
        self.provider_id = provider_id

    def __repr__(self):
        return f"<GatewayResult ok={self.ok} status={self.status_code} error={self.error!r}>"


class SMSGateway:
    """HTTP SMS provider gateway.

    One instance per application, registered by the app factory as
    ``app.extensions["sms_gateway"]``.

    Usage:
        gateway = current_app.extensions["sms_gateway"]
        result = gateway.send_sms("0501234567", "Occurrence OCC25-0001 referred")
    """

    def __init__(self, session: requests.Session | None = None, sleep=time.sleep) -> None:
        self._session: requests.Session | None = session
        self._sleep = sleep

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("SMS_GATEWAY_URL"))

    # ── Send ─────────────────────────────────────────────────────────────────

    def send_sms(self, mobile_no: str, body: str) -> GatewayResult:
        """Send a text message to a local mobile number.

        Returns a failed GatewayResult (never raises) for malformed numbers,
        transport errors and non-2xx responses.
        """
        if not validate_mobile_number(mobile_no):
            return GatewayResult(False, None, f"Invalid mobile number: {mask_mobile_number(mobile_no)}", 0)

        cfg = current_app.config
        number = to_international(mobile_no, cfg.get("SMS_COUNTRY_CODE", "92"))

        if not self.is_configured():
            logger.info("SMS (dev mode): to=%s body='%s'", mask_mobile_number(number), body[:60])
            return GatewayResult(True, None, None, 0)

        payload = {
            "to": number,
            "from": cfg.get("SMS_SENDER_ID", "OCCTRACK"),
            "text": body,
        }
        headers = {"Content-Type": "application/json"}
        api_key = cfg.get("SMS_GATEWAY_API_KEY")
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        timeout = cfg.get("SMS_GATEWAY_TIMEOUT", _DEFAULT_TIMEOUT)

        return self._post_with_retry(cfg["SMS_GATEWAY_URL"], payload, headers, timeout)

    def _post_with_retry(self, url: str, payload: dict, headers: dict, timeout: int) -> GatewayResult:
        start = time.monotonic()
        last_error: str | None = None
        last_status: int | None = None

        for attempt in range(_RETRY_MAX + 1):
            try:
                resp = self.session.post(url, json=payload, headers=headers, timeout=timeout)
                last_status = resp.status_code
                if 200 <= resp.status_code < 300:
                    provider_id = None
                    try:
                        body_json = resp.json()
                    except ValueError:
                        body_json = None
                    if isinstance(body_json, dict):
                        provider_id = body_json.get("id")
                    duration_ms = int((time.monotonic() - start) * 1000)
                    logger.info("SMS sent: to=%s status=%s", mask_mobile_number(payload["to"]), resp.status_code)
                    return GatewayResult(True, resp.status_code, None, duration_ms, provider_id)

                last_error = f"HTTP {resp.status_code}: {resp.text[:200]}"
                if resp.status_code < 500:
                    break
            except requests.RequestException as exc:
                last_error = str(exc)
                last_status = None

            if attempt < _RETRY_MAX:
                logger.warning(
                    "SMS attempt %d failed, retrying: %s", attempt + 1, last_error,
                )
                self._sleep(_RETRY_BACKOFF_SECONDS[attempt])

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.error("SMS failed: to=%s error=%s", mask_mobile_number(payload["to"]), last_error)
        return GatewayResult(False, last_status, last_error, duration_ms)


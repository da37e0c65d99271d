"""occurrence_tracker.integrations — External transport gateway modules.

All outbound HTTP calls to third-party delivery providers go through a gateway
in this package, never via bare `requests` calls in services.

Every gateway call is:
  - Authenticated (API key injected by the gateway)
  - Retried with backoff
  - Bounded by a request timeout
  - Reported back as a structured result instead of raising

Current gateways:
  sms_gateway.SMSGateway — HTTP SMS provider used for MOBILE notifications
"""

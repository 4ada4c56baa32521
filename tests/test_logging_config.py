from hirepath.core.logging_config import sanitize_log_data


def test_paypal_transmission_signature_is_redacted():
    headers = {
        "paypal-transmission-sig": "c2lnbmF0dXJl",
        "paypal-transmission-id": "tx-1",
        "Stripe-Signature": "t=1,v1=abc",
        "content-type": "application/json",
    }

    sanitized = sanitize_log_data(headers)

    assert sanitized["paypal-transmission-sig"] == "***REDACTED***"
    assert sanitized["Stripe-Signature"] == "***REDACTED***"
    assert sanitized["paypal-transmission-id"] == "tx-1"
    assert sanitized["content-type"] == "application/json"

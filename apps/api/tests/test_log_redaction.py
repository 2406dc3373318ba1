from __future__ import annotations

from settlement_api.core.logging import REDACTION_TEXT, mask_code, redact_context


def test_mask_code_keeps_prefix() -> None:
    assert mask_code("AB12CD") == "AB****"
    assert mask_code("AB") == "**"
    assert mask_code(None) == ""


def test_redact_context_hides_bearer_values() -> None:
    cleaned = redact_context(
        {
            "short_code": "XY7Q9P",
            "qr_payload": '{"pending_id": "abc"}',
            "code": "insufficient_points",
            "user_id": 7,
        }
    )

    assert cleaned == {
        "short_code": "XY****",
        "qr_payload": REDACTION_TEXT,
        "code": "insufficient_points",
        "user_id": 7,
    }

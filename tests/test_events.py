import logging

from mediawall.services.events import emit_suggestion_event, normalize_context


def test_normalize_context_drops_empty_values_and_caps_text() -> None:
    normalised = normalize_context({"client": "  10.0.0.1 ", "note": "   ", "live": 0, "missing": None, "long": "x" * 500})

    assert normalised == {"client": "10.0.0.1", "live": 0, "long": "x" * 200}


def test_suggestion_event_is_logged_with_details(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="mediawall.events"):
        emit_suggestion_event("added", payload={"length": 12, "live": 3}, context={"client": "1.2.3.4"})

    record = caplog.records[-1]
    assert record.getMessage() == "[SUGGESTION] added (client=1.2.3.4, length=12, live=3)"
    assert record.event_type == "SUGGESTION"
    assert record.event_details == {"client": "1.2.3.4", "length": 12, "live": 3}

"""
Unit tests for negotiation-aware logging.

WHAT: Test the negotiation log adapter and record filter
WHY: Concurrent negotiations are only told apart in the logs by their id
HOW: Capture records with caplog and run the filter on plain records
"""

import logging

import pytest

from sourcing.utils.logger import NegotiationRecordFilter, get_negotiation_logger


@pytest.mark.unit
def test_negotiation_logger_stamps_id(caplog):
    """Test lines are prefixed and carry negotiation_id."""
    log = get_negotiation_logger("sourcing.tests", "neg-9")

    with caplog.at_level(logging.INFO, logger="sourcing.tests"):
        log.info("active -> impasse at round 4")

    record = caplog.records[-1]
    assert record.getMessage() == "[neg-9] active -> impasse at round 4"
    assert record.negotiation_id == "neg-9"


@pytest.mark.unit
def test_filter_drops_records_without_negotiation():
    """Test only negotiation records reach the negotiation log."""
    plain = logging.LogRecord("sourcing", logging.INFO, __file__, 1, "startup", None, None)
    stamped = logging.LogRecord("sourcing", logging.INFO, __file__, 1, "turn", None, None)
    stamped.negotiation_id = "neg-1"

    record_filter = NegotiationRecordFilter()

    assert not record_filter.filter(plain)
    assert record_filter.filter(stamped)

"""Unit tests for hallcal.ics_normalizer."""

import pytest

from hallcal.feed_exceptions import FeedErrorKind, TextNotCalendarError
from hallcal.ics_normalizer import (
    BYTE_ORDER_MARK,
    ensure_calendar_text,
    fix_broken_line_folding,
    normalize_ics_text,
    text_preview,
)
from tests.fixtures.ics_samples import (
    BROKEN_FOLDING_ICS,
    HTML_ERROR_PAGE,
    SIMPLE_ICS,
    TRUNCATED_ICS,
)

pytestmark = [pytest.mark.unit, pytest.mark.fast]


class TestFixBrokenLineFolding:
    """Tests for repair of raw line breaks inside property values."""

    def test_fix_folding_when_stray_value_line_then_merges_with_escaped_newline(self) -> None:
        """Test a line without ; or : is appended to the previous line."""
        text = "LOCATION:Building 4\r\nSecond floor\r\nSUMMARY:Board"

        result = fix_broken_line_folding(text)

        assert result == "LOCATION:Building 4\\nSecond floor\r\nSUMMARY:Board"

    def test_fix_folding_when_proper_continuation_then_unchanged(self) -> None:
        """Test RFC continuation lines (leading space or tab) are left alone."""
        text = "DESCRIPTION:first part\r\n second part\r\n\tthird part"

        assert fix_broken_line_folding(text) == text

    def test_fix_folding_when_bare_lf_line_endings_then_rejoins_with_crlf(self) -> None:
        """Test LF and CR line endings are normalized to CRLF."""
        text = "BEGIN:VCALENDAR\nVERSION:2.0\rEND:VCALENDAR\n"

        assert fix_broken_line_folding(text) == "BEGIN:VCALENDAR\r\nVERSION:2.0\r\nEND:VCALENDAR"

    def test_fix_folding_when_several_stray_lines_then_all_merged(self) -> None:
        """Test consecutive stray lines chain onto the same property."""
        text = "LOCATION:A\r\nB\r\nC"

        assert fix_broken_line_folding(text) == "LOCATION:A\\nB\\nC"

    def test_fix_folding_when_first_line_is_stray_then_kept(self) -> None:
        """Test a stray first line has nothing to merge into and is kept."""
        assert fix_broken_line_folding("hello\r\nX:1") == "hello\r\nX:1"


class TestNormalizeIcsText:
    """Tests for normalize_ics_text."""

    def test_normalize_when_bom_present_then_stripped(self) -> None:
        """Test a leading byte-order mark is removed."""
        result = normalize_ics_text(BYTE_ORDER_MARK + SIMPLE_ICS)

        assert result.startswith("BEGIN:VCALENDAR")

    def test_normalize_when_end_marker_missing_then_appended(self) -> None:
        """Test a truncated document gets its terminator back."""
        result = normalize_ics_text(TRUNCATED_ICS)

        assert result.endswith("END:VEVENT\r\nEND:VCALENDAR")

    def test_normalize_when_complete_document_then_terminator_not_duplicated(self) -> None:
        """Test a complete document keeps exactly one END:VCALENDAR."""
        result = normalize_ics_text(SIMPLE_ICS + "\r\n\r\n  ")

        assert result.count("END:VCALENDAR") == 1
        assert result.endswith("END:VCALENDAR")

    def test_normalize_when_not_calendar_then_no_terminator_added(self) -> None:
        """Test text without BEGIN:VCALENDAR is not given a terminator."""
        result = normalize_ics_text("just some text")

        assert "END:VCALENDAR" not in result

    def test_normalize_when_valid_document_then_content_lines_preserved(self) -> None:
        """Test structurally valid content is not altered beyond line endings."""
        result = normalize_ics_text(SIMPLE_ICS)

        assert result.split("\r\n") == SIMPLE_ICS.rstrip().split("\r\n")

    def test_normalize_when_broken_location_then_repaired(self) -> None:
        """Test the broken LOCATION sample is joined onto one line."""
        result = normalize_ics_text(BROKEN_FOLDING_ICS)

        assert "LOCATION:Building 4\\nSecond floor" in result.split("\r\n")


class TestEnsureCalendarText:
    """Tests for ensure_calendar_text."""

    def test_ensure_calendar_text_when_html_then_raises_text_not_calendar(self) -> None:
        """Test an HTML page is rejected before parsing."""
        with pytest.raises(TextNotCalendarError) as exc_info:
            ensure_calendar_text(HTML_ERROR_PAGE)

        assert exc_info.value.kind == FeedErrorKind.TEXT_NOT_CALENDAR
        assert "HTML" in str(exc_info.value)
        assert "<!DOCTYPE html>" in str(exc_info.value)

    def test_ensure_calendar_text_when_empty_then_raises(self) -> None:
        """Test an empty body is not a calendar."""
        with pytest.raises(TextNotCalendarError, match="empty"):
            ensure_calendar_text("")

    def test_ensure_calendar_text_when_calendar_then_returns_normalized(self) -> None:
        """Test a calendar passes through normalization."""
        assert ensure_calendar_text(TRUNCATED_ICS).endswith("END:VCALENDAR")


def test_text_preview_collapses_whitespace_and_truncates() -> None:
    """Test previews are single-line and bounded."""
    preview = text_preview("a\r\n  b\tc" + "x" * 200, limit=10)

    assert preview == "a b cxxxxx"

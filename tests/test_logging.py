"""Tests for the scan_id log processor."""

from mailpool_mcp.core.logging import add_scan_id, get_scan_id, set_scan_id


class TestScanId:
    def test_added_while_set(self):
        set_scan_id("scan-1")
        try:
            event = add_scan_id(None, "info", {"event": "reply_classified"})
        finally:
            set_scan_id(None)

        assert event["scan_id"] == "scan-1"

    def test_absent_when_cleared(self):
        set_scan_id(None)

        event = add_scan_id(None, "info", {"event": "scan_start"})

        assert "scan_id" not in event
        assert get_scan_id() is None

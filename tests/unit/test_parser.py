"""
Tests for amzsync.parser module.
"""
from amzsync.parser import group_by_order, normalize_header, parse_report, resolve_columns


class TestNormalizeHeader:

    def test_spaced_title_case(self):
        assert normalize_header(" Amazon Order ID ") == "amazon-order-id"

    def test_already_normal(self):
        assert normalize_header("item-price") == "item-price"

    def test_collapses_runs(self):
        assert normalize_header("Ship  /  City") == "ship-city"


class TestResolveColumns:

    def test_only_present_aliases(self):
        columns = resolve_columns(["order-id", "seller-sku"])
        assert columns["order_id"] == ("order-id",)
        assert columns["sku"] == ("seller-sku",)
        assert columns["asin"] == ()

    def test_preference_order(self):
        columns = resolve_columns(["shipment-date", "purchase-date"])
        assert columns["purchase_date"] == ("purchase-date", "shipment-date")


class TestParseReport:
    """Tests for TSV report parsing."""

    def test_empty_payloads(self):
        """No header, or a header with no records, is an empty report."""
        assert parse_report("").is_empty
        assert parse_report("\n\n").is_empty
        assert parse_report("amazon-order-id\tsku\n").is_empty

    def test_rows_and_aliases(self, sample_report):
        report = parse_report(sample_report)

        assert len(report) == 5
        first = report.rows[0]
        assert first.get("order_id") == "111-0000001-0000001"
        assert first.get("quantity") == "2"
        assert first.get("ship_date") == "2025-06-02T12:00:00+00:00"

    def test_alias_fallback_on_blank(self):
        """A blank preferred column falls back to the next alias for that row."""
        content = "purchase-date\tshipment-date\n\t2025-01-02T00:00:00Z\n2025-01-01T00:00:00Z\t2025-01-03T00:00:00Z\n"
        report = parse_report(content)

        assert report.rows[0].get("purchase_date") == "2025-01-02T00:00:00Z"
        assert report.rows[1].get("purchase_date") == "2025-01-01T00:00:00Z"

    def test_windows_line_endings_and_short_rows(self):
        content = "Amazon Order ID\tSKU\tItem Price\r\n111-1\tSKU-A\r\n"
        report = parse_report(content)

        row = report.rows[0]
        assert row.get("order_id") == "111-1"
        assert row.get("sku") == "SKU-A"
        assert row.get("item_price") == ""

    def test_missing_field_default(self, sample_report):
        row = parse_report(sample_report).rows[0]
        assert row.get("gift_wrap_price", "0") == "0"


class TestGroupByOrder:

    def test_groups_and_orphans(self, sample_report):
        groups, orphans = group_by_order(parse_report(sample_report))

        assert list(groups) == [
            "111-0000001-0000001",
            "111-0000002-0000002",
            "111-0000003-0000003",
        ]
        assert len(groups["111-0000001-0000001"]) == 2
        assert orphans == 1

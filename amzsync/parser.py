"""
Tab-delimited report parsing.

Report documents are TSV: the first line is the header, every other
non-blank line is one record. Header names are lower-cased and runs of
characters outside ``[a-z0-9_-]`` collapse to ``-`` so ``Amazon Order ID``
and ``amazon-order-id`` land on the same key.

The provider has renamed several columns over the years. ``FIELD_ALIASES``
lists, per logical field, the accepted header names in preference order;
they are resolved against the header once per document.
"""
import re
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from amzsync.observability import get_logger

logger = get_logger(__name__)

_HEADER_JUNK = re.compile(r"[^a-z0-9_-]+")

FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "order_id": ("amazon-order-id", "order-id"),
    "purchase_date": ("purchase-date", "shipment-date"),
    "ship_date": ("ship-date", "shipment-date"),
    "order_status": ("order-status",),
    "sku": ("sku", "seller-sku"),
    "asin": ("asin",),
    "quantity": ("quantity", "quantity-shipped"),
    "currency": ("currency",),
    "sales_channel": ("sales-channel",),
    "item_price": ("item-price",),
    "item_tax": ("item-tax",),
    "shipping_price": ("shipping-price",),
    "shipping_tax": ("shipping-tax",),
    "gift_wrap_price": ("gift-wrap-price",),
    "gift_wrap_tax": ("gift-wrap-tax",),
    "item_promotion_discount": ("item-promotion-discount",),
    "ship_promotion_discount": ("ship-promotion-discount",),
    "ship_city": ("ship-city",),
    "ship_state": ("ship-state",),
    "ship_postal_code": ("ship-postal-code",),
    "ship_country": ("ship-country",),
}


def normalize_header(name: str) -> str:
    """``' Amazon Order ID '`` -> ``'amazon-order-id'``."""
    return _HEADER_JUNK.sub("-", name.strip().lower())


def resolve_columns(
    headers: List[str],
    aliases: Dict[str, Tuple[str, ...]] = FIELD_ALIASES,
) -> Dict[str, Tuple[str, ...]]:
    """
    Map each logical field to the aliases actually present in ``headers``.

    Order is preserved, so a row falls back to the next alias only when the
    preferred column is blank for that row.
    """
    present = set(headers)
    return {
        logical: tuple(normalize_header(a) for a in names if normalize_header(a) in present)
        for logical, names in aliases.items()
    }


@dataclass
class ReportRow:
    """One record of a parsed report."""
    values: Dict[str, str]
    columns: Dict[str, Tuple[str, ...]] = field(repr=False, default_factory=dict)

    def get(self, logical: str, default: str = "") -> str:
        """First non-blank value among the logical field's columns."""
        for header in self.columns.get(logical, ()):
            value = self.values.get(header, "")
            if value != "":
                return value
        return default

    def __getitem__(self, header: str) -> str:
        return self.values[header]


@dataclass
class ParsedReport:
    headers: List[str]
    rows: List[ReportRow]
    columns: Dict[str, Tuple[str, ...]]

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def is_empty(self) -> bool:
        return not self.rows


def parse_report(content: str) -> ParsedReport:
    """
    Parse a TSV report document.

    Fewer than two non-blank lines (no header or no records) yields an
    empty report. Short records are padded with blanks; extra cells are
    ignored.
    """
    lines = [line for line in content.split("\n") if line.strip()]
    if len(lines) < 2:
        return ParsedReport(headers=[], rows=[], columns={})

    headers = [normalize_header(h) for h in lines[0].split("\t")]
    columns = resolve_columns(headers)

    rows = []
    for line in lines[1:]:
        cells = line.split("\t")
        values = {
            header: (cells[i].strip() if i < len(cells) else "")
            for i, header in enumerate(headers)
        }
        rows.append(ReportRow(values=values, columns=columns))

    missing = [name for name in ("order_id", "sku") if not columns.get(name)]
    if missing:
        logger.warning(
            f"Report header lacks expected columns: {', '.join(missing)}",
            extra={"headers": headers[:20]},
        )

    return ParsedReport(headers=headers, rows=rows, columns=columns)


def group_by_order(report: ParsedReport) -> Tuple[Dict[str, List[ReportRow]], int]:
    """
    Group rows by order id, preserving first-seen order.

    Returns:
        Tuple of (groups, rows_without_order_id)
    """
    groups: Dict[str, List[ReportRow]] = {}
    orphans = 0
    for row in report.rows:
        order_id = row.get("order_id")
        if not order_id:
            orphans += 1
            continue
        groups.setdefault(order_id, []).append(row)
    return groups, orphans

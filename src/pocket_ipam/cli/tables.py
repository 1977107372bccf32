from __future__ import annotations

from datetime import datetime
from typing import Iterable, Mapping, Optional, Sequence

from pocket_ipam.core.models import Discovery, Host, SearchResults, Subnet

TIME_FORMAT = "%Y-%m-%d %H:%M"
EMPTY_TABLE = "No data to display.\n"


def _fmt_time(value: Optional[datetime]) -> str:
    return value.strftime(TIME_FORMAT) if value else ""


class Table:
    """Plain ASCII table with ``+---+`` rules and a row count footer."""

    def __init__(self, *headers: str) -> None:
        self.headers = list(headers)
        self.rows: list[list[str]] = []
        self.widths = [len(header) for header in headers]

    def add_row(self, *cells: object) -> None:
        row = ["" if cell is None else str(cell) for cell in cells]
        row = (row + [""] * len(self.headers))[: len(self.headers)]
        for i, cell in enumerate(row):
            self.widths[i] = max(self.widths[i], len(cell))
        self.rows.append(row)

    def _rule(self) -> str:
        return "+" + "+".join("-" * (width + 2) for width in self.widths) + "+\n"

    def _line(self, cells: Sequence[str]) -> str:
        return "|" + "|".join(f" {cell.ljust(width)} " for cell, width in zip(cells, self.widths)) + "|\n"

    def render(self) -> str:
        if not self.rows:
            return EMPTY_TABLE
        parts = [self._rule(), self._line(self.headers), self._rule()]
        parts.extend(self._line(row) for row in self.rows)
        parts.append(self._rule())
        parts.append(f"\nTotal: {len(self.rows)} rows\n")
        return "".join(parts)

    __str__ = render


def _label(subnet_id: Optional[str], labels: Mapping[str, str]) -> str:
    if not subnet_id:
        return ""
    return labels.get(subnet_id) or subnet_id


def format_subnets(subnets: Iterable[Subnet], labels: Mapping[str, str] | None = None) -> str:
    labels = labels or {}
    table = Table("ID", "CIDR", "Name", "Parent", "Comment", "Created")
    for subnet in subnets:
        table.add_row(
            subnet.id,
            subnet.cidr,
            subnet.name,
            _label(subnet.parent_id, labels),
            subnet.comment,
            _fmt_time(subnet.created_at),
        )
    return table.render()


def format_hosts(hosts: Iterable[Host], labels: Mapping[str, str] | None = None) -> str:
    labels = labels or {}
    table = Table("ID", "Address", "Name", "Parent", "Comment", "Created", "Last Seen")
    for host in hosts:
        table.add_row(
            host.id,
            host.address,
            host.name,
            _label(host.parent_id, labels),
            host.comment,
            _fmt_time(host.created_at),
            _fmt_time(host.last_seen),
        )
    return table.render()


def format_discoveries(discoveries: Iterable[Discovery], labels: Mapping[str, str] | None = None) -> str:
    labels = labels or {}
    table = Table("ID", "Address", "Subnet", "Status", "Discovered", "Last Seen")
    for discovery in discoveries:
        table.add_row(
            discovery.id,
            discovery.address,
            _label(discovery.subnet_id, labels),
            discovery.status,
            _fmt_time(discovery.discovered_at),
            _fmt_time(discovery.last_seen),
        )
    return table.render()


def format_search_results(results: SearchResults) -> str:
    lines = ["Search Results:", ""]

    if results.subnets:
        lines.append("Subnets:")
        for subnet in results.subnets:
            lines.append(f"  {subnet.cidr} ({subnet.id}) - {subnet.name}")
            if subnet.comment:
                lines.append(f"    Comment: {subnet.comment}")
        lines.append("")

    if results.hosts:
        lines.append("Hosts:")
        for host in results.hosts:
            lines.append(f"  {host.address} ({host.id}) - {host.name}")
            if host.comment:
                lines.append(f"    Comment: {host.comment}")
        lines.append("")

    if results.discoveries:
        lines.append("Discoveries:")
        for discovery in results.discoveries:
            lines.append(f"  {discovery.address} ({discovery.id}) - Status: {discovery.status}")
        lines.append("")

    if results.is_empty:
        lines.append("No results found.")

    return "\n".join(lines) + "\n"


def format_record(title: str, fields: Sequence[tuple[str, object]]) -> str:
    """Key/value block used for confirmations; empty values are left out."""
    lines = [title]
    for key, value in fields:
        if value in (None, ""):
            continue
        if isinstance(value, datetime):
            value = value.strftime(TIME_FORMAT)
        lines.append(f"   {key}: {value}")
    return "\n".join(lines) + "\n"

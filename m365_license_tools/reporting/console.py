"""
Console output — fixed-width tables for assignments, SKUs, and removal summaries.
"""

from __future__ import annotations


def _fit(value: str, width: int) -> str:
    value = str(value)
    if len(value) > width:
        return value[:width - 1] + "…"
    return value


def format_assignment_table(records: list) -> str:
    """Render assignment records as a console table."""
    if not records:
        return "  No matching license assignments found."

    lines = [
        f"  {'Display Name':<30s} {'User Principal Name':<45s} {'SKU':<24s} {'Source':<10s}",
        f"  {'─'*30} {'─'*45} {'─'*24} {'─'*10}",
    ]
    for r in records:
        source = "Direct" if r.assigned_directly else "Group"
        sku = r.sku_part_number or r.sku_id
        lines.append(
            f"  {_fit(r.display_name, 30):<30s} {_fit(r.user_principal_name, 45):<45s} "
            f"{_fit(sku, 24):<24s} {source:<10s}"
        )
    direct = sum(1 for r in records if r.assigned_directly)
    lines.append("")
    lines.append(f"  {direct} direct, {len(records) - direct} group-inherited")
    return "\n".join(lines)


def format_sku_table(skus: list) -> str:
    """Render subscribed SKUs sorted by consumption."""
    if not skus:
        return "  No subscribed SKUs found."

    lines = [
        f"  {'SKU Part Number':<36s} {'SKU ID':<38s} {'Consumed':>9s} {'Enabled':>9s} {'Free':>7s}",
        f"  {'─'*36} {'─'*38} {'─'*9} {'─'*9} {'─'*7}",
    ]
    for s in sorted(skus, key=lambda s: s.consumed_units, reverse=True):
        lines.append(
            f"  {_fit(s.sku_part_number, 36):<36s} {s.sku_id:<38s} "
            f"{s.consumed_units:>9d} {s.enabled_units:>9d} {s.available_units:>7d}"
        )
    return "\n".join(lines)


def format_removal_summary(summary) -> str:
    """Render the totals block printed at the end of a removal run."""
    counts = summary.to_dict()
    lines = [
        f"  Rows processed:   {counts['total']}",
        f"  Succeeded:        {counts['succeeded']}",
    ]
    if summary.what_if:
        lines.append(f"    would remove:   {counts['what_if']}")
    else:
        lines.append(f"    removed:        {counts['removed']}")
        lines.append(f"    not assigned:   {counts['not_assigned']}")
    lines.append(f"  Failed:           {counts['failed']}")
    lines.append(f"  Throttle events:  {counts['throttle_events']}")
    if summary.aborted:
        lines.append("  ⚠  Run stopped at the first failure (--stop-on-error)")
    if summary.interrupted:
        lines.append("  ⚠  Run interrupted by user")
    return "\n".join(lines)

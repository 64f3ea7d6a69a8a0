"""Table/header HTML for quotations, matching the approval screen markup."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape

from quotedesk.app.utils import format_amount, parse_number
from quotedesk.shared.normalize import format_item_description, pipe_header_label

TEMPLATES_DIR = Path(__file__).resolve().parents[1] / "templates"


def create_template_env(templates_dir: Path = TEMPLATES_DIR) -> Environment:
    return Environment(
        loader=FileSystemLoader(str(templates_dir)),
        autoescape=select_autoescape(["html"]),
    )


def compute_grand_total(line_items: Any) -> Tuple[float, str]:
    """Sum of ``quantity * finalRate``; non-list input counts as no items."""
    if not isinstance(line_items, list):
        return 0.0, "0.00"
    total = 0.0
    for item in line_items:
        if not isinstance(item, Mapping):
            continue
        total += parse_number(item.get("quantity")) * parse_number(item.get("finalRate"))
    return total, format_amount(total)


def _group_rows(line_items: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    groups: List[Dict[str, Any]] = []
    current_type: Optional[str] = None
    for number, item in enumerate(line_items, start=1):
        pipe_type = str(item.get("identifiedPipeType") or "")
        if not groups or pipe_type != current_type:
            groups.append({"label": pipe_header_label(pipe_type) if pipe_type else "Items", "rows": []})
            current_type = pipe_type
        quantity = parse_number(item.get("quantity"))
        final_rate = parse_number(item.get("finalRate"))
        description = format_item_description(item) or pipe_type
        groups[-1]["rows"].append(
            {
                "number": number,
                "description": description,
                "quantity": item.get("quantity", ""),
                "unit_rate": item.get("unitRate", ""),
                "margin": item.get("marginPercent") or "",
                "final_rate": item.get("finalRate", ""),
                "line_total": format_amount(quantity * final_rate),
            }
        )
    return groups


def build_table_html(line_items: Any, env: Environment) -> Tuple[str, float, str]:
    """Return ``(tableHTML, grandTotal, grandTotalFormatted)``.

    Consecutive items of the same pipe type share one header row labelled
    with the pipe standard for that type (e.g. IS 1239).
    """
    items = [item for item in line_items if isinstance(item, Mapping)] if isinstance(line_items, list) else []
    total, formatted = compute_grand_total(items)
    html = env.get_template("quotation_table.html").render(groups=_group_rows(items))
    return html, total, formatted


def build_header_html(quotation: Mapping[str, Any], env: Environment, quote_number: str = "") -> str:
    q = quotation
    return env.get_template("quotation_header.html").render(
        quotation_date=q.get("quotationDate") or "",
        kind_attn=q.get("customerName") or q.get("kindAttn") or "",
        bill_to=q.get("companyName") or q.get("projectName") or q.get("billTo") or "",
        ship_to=q.get("projectName") or q.get("shipTo") or "",
        phone_number=q.get("phoneNumber") or "",
        mobile_number=q.get("mobileNumber") or "",
        quote_number=quote_number or q.get("quoteNumber") or "",
        prepared_by=q.get("preparedBy") or "",
        assigned_to=q.get("assignedTo") or "",
        checked_by=q.get("checkedBy") or "",
    )

"""Quotation generation: rate handles + enquiry -> normalized quotation fields.

``QuotationGenerator.generate`` is a plain function of its inputs. It never
persists anything; the HTTP handlers and the ingestion pipeline decide what
to do with the result.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from quotedesk.app.services.errors import (
    FileHandleNotFoundError,
    MalformedAIResponseError,
    MissingContentError,
    MissingInstructionsError,
    NoRateDocumentsError,
    ServiceError,
)
from quotedesk.app.services.rate_sync import RateHandle, RateSyncEngine, rate_sync_from_context
from quotedesk.app.utils import format_amount, format_number, parse_json_object, parse_number

logger = logging.getLogger("quotedesk.quotes")

EXTRACTION_PROMPT = """Please analyze the following enquiry and extract quotation information. Use the PDF rate files provided ({file_count} file(s)) to match base rates. Read the PDF files directly to find the correct rates. Return the data in this exact JSON format:

{{
  "customerName": "",
  "companyName": "",
  "projectName": "",
  "shipTo": "",
  "quotationDate": "",
  "phoneNumber": "",
  "mobileNumber": "",
  "lineItems": [
    {{
      "originalDescription": "",
      "identifiedPipeType": "",
      "quantity": "",
      "unitRate": "",
      "marginPercent": "",
      "finalRate": "",
      "lineTotal": ""
    }}
  ]
}}

Extract all pipe information from the enquiry, match with rates from the uploaded PDF rate files, calculate final rates with margins, and return the complete JSON."""


def build_prompt(enquiry_text: str, file_count: int) -> str:
    return f"{EXTRACTION_PROMPT.format(file_count=file_count)}\n\nEnquiry:\n{enquiry_text or ''}"


def format_quotation_date(day: Optional[date] = None) -> str:
    """``October 17, 2026`` (month name, day without padding, year)."""
    day = day or date.today()
    return f"{day.strftime('%B')} {day.day}, {day.year}"


def normalize_line_item(item: Any) -> Dict[str, str]:
    """Recompute ``finalRate``/``lineTotal`` from quantity, unit rate and margin.

    Values returned by the model for the derived fields are ignored; missing
    or non-numeric inputs count as 0.
    """
    if not isinstance(item, dict):
        item = {}
    unit_rate = parse_number(item.get("unitRate"))
    margin = parse_number(item.get("marginPercent"))
    quantity = parse_number(item.get("quantity"))
    final_rate = unit_rate * (1 + margin / 100)
    line_total = quantity * final_rate
    return {
        "originalDescription": str(item.get("originalDescription") or ""),
        "identifiedPipeType": str(item.get("identifiedPipeType") or ""),
        "quantity": format_number(quantity),
        "unitRate": format_amount(unit_rate),
        "marginPercent": format_number(margin),
        "finalRate": format_amount(final_rate),
        "lineTotal": format_amount(line_total),
    }


def normalize_quotation(data: Dict[str, Any], *, today: Optional[date] = None) -> Dict[str, Any]:
    result = dict(data)
    items = result.get("lineItems")
    if not isinstance(items, list):
        items = []
    result["lineItems"] = [normalize_line_item(item) for item in items]
    if not result.get("quotationDate"):
        result["quotationDate"] = format_quotation_date(today)
    return result


def parse_ai_response(raw: str) -> Dict[str, Any]:
    try:
        return parse_json_object(raw)
    except ValueError as exc:
        raise MalformedAIResponseError(raw=raw or "") from exc


class QuotationGenerator:
    def __init__(self, rate_sync: RateSyncEngine, inference: Any, model_name: str = ""):
        self.rate_sync = rate_sync
        self.inference = inference
        self.model_name = model_name

    def _call(self, prompt_text: str, instructions: str, handles: List[RateHandle], enquiry_file_id: Optional[str]) -> str:
        file_ids = [h.file_id for h in handles]
        if enquiry_file_id:
            file_ids.insert(0, enquiry_file_id)
        return self.inference.extract(prompt_text, instructions, file_ids)

    def generate(
        self,
        *,
        enquiry_text: Optional[str] = None,
        enquiry_file_id: Optional[str] = None,
        instructions: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        if not (enquiry_text or "").strip() and not enquiry_file_id:
            raise MissingContentError()
        if not (instructions or "").strip():
            raise MissingInstructionsError()
        if self.inference is None:
            raise ServiceError("Inference service is disabled (SKIP_LLM_SETUP=1).", status_code=503)

        handles = self.rate_sync.get_or_build_handles()
        if not handles:
            raise NoRateDocumentsError()

        prompt_text = build_prompt(enquiry_text or "", len(handles))
        try:
            raw = self._call(prompt_text, instructions, handles, enquiry_file_id)
        except FileHandleNotFoundError as exc:
            logger.warning("stale rate file handle (%s), rebuilding index and retrying once", exc.message)
            mappings = self.rate_sync.rebuild()
            handles = [RateHandle(m.inference_file_id, m.display_name) for m in mappings]
            prompt_text = build_prompt(enquiry_text or "", len(handles))
            raw = self._call(prompt_text, instructions, handles, enquiry_file_id)

        result = normalize_quotation(parse_ai_response(raw), today=today)
        result["_ai"] = {
            "raw": raw,
            "model": self.model_name,
            "files": [h.name for h in handles],
        }
        return result


def generator_from_context(ctx) -> QuotationGenerator:
    return QuotationGenerator(rate_sync_from_context(ctx), ctx.inference, model_name=ctx.model_extraction)

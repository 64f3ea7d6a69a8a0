"""HTTP surface. Handlers stay thin: parse input, call a service, map errors."""

from __future__ import annotations

import hmac
import logging
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from quotedesk.app.services.context import QuoteServiceContext
from quotedesk.app.services.errors import AllUploadsFailedError, ServiceError
from quotedesk.app.services.ingest_service import ingest_pipeline_from_context
from quotedesk.app.services.quote_service import generator_from_context
from quotedesk.app.services.rate_sync import rate_sync_from_context
from quotedesk.store import DuplicateQuotationError

logger = logging.getLogger("quotedesk.api")

router = APIRouter(prefix="/api")

CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


# --- Models ---

class InstructionsRequest(BaseModel):
    instructions: Optional[str] = None


class DefaultTermsRequest(BaseModel):
    defaultTerms: Optional[Any] = None


class DeleteRateRequest(BaseModel):
    filename: Optional[str] = None


class GenerateQuotationRequest(BaseModel):
    emailContent: Optional[str] = None
    fileContent: Optional[str] = None
    instructions: Optional[str] = None


class ChatRequest(BaseModel):
    message: Optional[str] = None
    context: Optional[str] = None


# --- Helpers ---

def get_context(request: Request) -> QuoteServiceContext:
    return request.app.state.ctx


def _http_error(exc: ServiceError) -> HTTPException:
    if isinstance(exc, AllUploadsFailedError):
        return HTTPException(status_code=exc.status_code, detail={"message": exc.message, "errors": exc.errors})
    return HTTPException(status_code=exc.status_code, detail=exc.message)


def _require_inference(ctx: QuoteServiceContext) -> None:
    if ctx.inference is None:
        raise HTTPException(status_code=503, detail="Inference service is disabled (SKIP_LLM_SETUP=1).")


def _require_quotations(ctx: QuoteServiceContext) -> None:
    if ctx.quotations is None:
        raise HTTPException(status_code=501, detail="Quotation storage is not configured.")


# --- Health ---

@router.get("/health")
def health():
    return {"status": "ok", "message": "Server is running"}


# --- Rate documents ---

@router.post("/upload-rates")
def upload_rates(
    rateFiles: List[UploadFile] = File(...),
    ctx: QuoteServiceContext = Depends(get_context),
):
    if not rateFiles:
        raise HTTPException(status_code=400, detail="No files uploaded")
    engine = rate_sync_from_context(ctx)
    results: List[Dict[str, Any]] = []
    errors: List[Dict[str, str]] = []
    for upload in rateFiles:
        name = upload.filename or "Unknown"
        data = upload.file.read()
        if len(data) > ctx.max_upload_bytes:
            errors.append({"filename": name, "error": f"File exceeds {ctx.max_upload_bytes // (1024 * 1024)} MB limit"})
            continue
        try:
            results.append(engine.register_upload(data, name))
        except ServiceError as exc:
            errors.append({"filename": name, "error": exc.message})
    if not results and errors:
        raise HTTPException(status_code=400, detail={"message": "All files failed to upload", "errors": errors})
    payload: Dict[str, Any] = {
        "success": True,
        "message": f"{len(results)} rate file(s) uploaded successfully",
        "filenames": [r["filename"] for r in results],
        "count": len(results),
    }
    if errors:
        payload["errors"] = errors
    return payload


@router.post("/delete-rate-file")
def delete_rate_file(payload: DeleteRateRequest, ctx: QuoteServiceContext = Depends(get_context)):
    if not payload.filename:
        raise HTTPException(status_code=400, detail="Filename required")
    try:
        rate_sync_from_context(ctx).remove_document(payload.filename)
    except ServiceError as exc:
        raise _http_error(exc) from exc
    return {"success": True, "message": "File deleted successfully"}


@router.get("/view-rate-file")
def view_rate_file(filename: Optional[str] = Query(None), ctx: QuoteServiceContext = Depends(get_context)):
    if not filename:
        raise HTTPException(status_code=400, detail="Filename is required")
    name = PurePosixPath(filename).name
    if not name:
        raise HTTPException(status_code=400, detail="Invalid filename")
    try:
        data = rate_sync_from_context(ctx).read_document(name)
    except ServiceError as exc:
        raise _http_error(exc) from exc
    media_type = CONTENT_TYPES.get(PurePosixPath(name).suffix.lower(), "application/octet-stream")
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f'inline; filename="{name}"'},
    )


@router.get("/current-rates")
def current_rates(ctx: QuoteServiceContext = Depends(get_context)):
    filenames = [doc.name for doc in rate_sync_from_context(ctx).list_documents()]
    return {"hasFiles": bool(filenames), "filenames": filenames, "count": len(filenames)}


@router.post("/sync-rates")
def sync_rates(ctx: QuoteServiceContext = Depends(get_context)):
    _require_inference(ctx)
    report = rate_sync_from_context(ctx).sync()
    return {"success": True, **report.to_dict()}


# --- Shared texts ---

@router.post("/save-instructions")
def save_instructions(payload: InstructionsRequest, ctx: QuoteServiceContext = Depends(get_context)):
    if not payload.instructions:
        raise HTTPException(status_code=400, detail="Instructions text is required")
    ctx.shared_texts.save_instructions(payload.instructions)
    return {"success": True, "message": "Instructions saved successfully"}


@router.get("/get-instructions")
def get_instructions(ctx: QuoteServiceContext = Depends(get_context)):
    content = ctx.shared_texts.get_instructions()
    return {"hasFile": content is not None, "content": content or ""}


@router.post("/save-default-terms")
def save_default_terms(payload: DefaultTermsRequest, ctx: QuoteServiceContext = Depends(get_context)):
    if payload.defaultTerms is None:
        raise HTTPException(status_code=400, detail="Default terms text is required")
    content = payload.defaultTerms if isinstance(payload.defaultTerms, str) else str(payload.defaultTerms)
    ctx.shared_texts.save_default_terms(content)
    return {"success": True, "message": "Default terms saved successfully"}


@router.get("/get-default-terms")
def get_default_terms(ctx: QuoteServiceContext = Depends(get_context)):
    content = ctx.shared_texts.get_default_terms()
    return {"hasFile": content is not None, "content": content or ""}


# --- Quotations ---

@router.post("/save-quotation")
def save_quotation(payload: Dict[str, Any] = Body(...), ctx: QuoteServiceContext = Depends(get_context)):
    _require_quotations(ctx)
    quotation = payload.get("quotation") if isinstance(payload, dict) else None
    if not isinstance(quotation, dict) or quotation.get("id") in (None, ""):
        raise HTTPException(status_code=400, detail="Quotation with id is required")
    try:
        ctx.quotations.save(quotation)
    except DuplicateQuotationError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"success": True}


@router.get("/next-quote-number")
def next_quote_number(ctx: QuoteServiceContext = Depends(get_context)):
    if ctx.quote_numbers is None:
        raise HTTPException(status_code=501, detail="Quote number counter is not configured.")
    return {"value": ctx.quote_numbers.next()}


@router.get("/quotations")
def list_quotations(ctx: QuoteServiceContext = Depends(get_context)):
    _require_quotations(ctx)
    return {"quotations": ctx.quotations.list_all()}


# --- Generation ---

@router.post("/generate-quotation")
def generate_quotation(payload: GenerateQuotationRequest, ctx: QuoteServiceContext = Depends(get_context)):
    try:
        return generator_from_context(ctx).generate(
            enquiry_text=payload.emailContent or payload.fileContent or "",
            instructions=payload.instructions,
        )
    except ServiceError as exc:
        raise _http_error(exc) from exc


@router.post("/generate-quotation-file")
def generate_quotation_file(
    emailContent: str = Form(""),
    instructions: str = Form(""),
    enquiryFile: Optional[UploadFile] = File(None),
    ctx: QuoteServiceContext = Depends(get_context),
):
    enquiry_file_id = None
    if enquiryFile is not None:
        _require_inference(ctx)
        data = enquiryFile.file.read()
        if len(data) > ctx.max_upload_bytes:
            raise HTTPException(status_code=413, detail="Enquiry file is too large")
        try:
            enquiry_file_id = ctx.inference.upload_file(data, enquiryFile.filename or "enquiry-file")
        except ServiceError as exc:
            raise HTTPException(status_code=exc.status_code, detail=f"Failed to upload enquiry file: {exc.message}") from exc
    try:
        return generator_from_context(ctx).generate(
            enquiry_text=emailContent,
            enquiry_file_id=enquiry_file_id,
            instructions=instructions,
        )
    except ServiceError as exc:
        raise _http_error(exc) from exc


@router.post("/ai-chat")
def ai_chat(payload: ChatRequest, ctx: QuoteServiceContext = Depends(get_context)):
    if not (payload.message or "").strip():
        raise HTTPException(status_code=400, detail="Message is required")
    _require_inference(ctx)
    try:
        reply = ctx.inference.chat(payload.message, payload.context)
    except ServiceError as exc:
        raise _http_error(exc) from exc
    return {"reply": reply}


# --- Mailbox ingestion ---

@router.post("/ingest-from-gmail")
async def ingest_from_gmail(request: Request, ctx: QuoteServiceContext = Depends(get_context)):
    try:
        secret = ctx.ingest_secret
        if secret:
            provided = request.headers.get("x-ingest-secret") or ""
            if not hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8")):
                return JSONResponse(
                    status_code=401,
                    content={"error": "Unauthorized", "message": "Missing or invalid X-Ingest-Secret header"},
                )

        try:
            body = await request.json()
        except ValueError:
            body = None
        emails = body.get("emails") if isinstance(body, dict) else None
        if not isinstance(emails, list):
            return JSONResponse(
                status_code=400,
                content={"error": "Bad request", "message": "Body must contain { emails: [ ... ] }"},
            )

        if ctx.quotations is None or ctx.quote_numbers is None:
            return JSONResponse(
                status_code=501,
                content={
                    "error": "Not implemented",
                    "message": "Mailbox ingest requires quotation storage and the quote number counter.",
                },
            )

        # The batch makes blocking LLM, upload and database calls.
        result = await run_in_threadpool(ingest_pipeline_from_context(ctx).process_all, emails)
        content: Dict[str, Any] = {"success": True, "created": result.created_count, "ids": result.created_ids}
        if result.errors:
            content["errors"] = result.errors
        return JSONResponse(status_code=200, content=content)
    except Exception as exc:
        logger.exception("mailbox ingest failed")
        return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})


def create_app(ctx: QuoteServiceContext) -> FastAPI:
    app = FastAPI(title="QuoteDesk")
    app.state.ctx = ctx
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ctx.allowed_origins or [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app

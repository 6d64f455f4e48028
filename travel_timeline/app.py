from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from travel_timeline.config import load_cors_origins, load_log_level, load_parse_max_bytes
from travel_timeline.document_parser import (
    PARSE_SUPPORTED_TYPES,
    ParseFailure,
    ParseFailureReason,
    parse_document,
)
from travel_timeline.document_store import DocumentNotFoundError, DocumentStore, UploadRejectedError
from travel_timeline.timeline import ParseTracker, apply_parse_result, build_timeline, preview_mode, record_view
from travel_timeline.upload_validation import RejectReason, load_upload_limits

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

PARSE_FAILURE_STATUS_CODES = {
    ParseFailureReason.UNSUPPORTED_TYPE_FOR_PARSING: 400,
    ParseFailureReason.TOO_LARGE: 400,
    ParseFailureReason.RESPONSE_VALIDATION_ERROR: 400,
    ParseFailureReason.MISSING_CREDENTIALS: 503,
    ParseFailureReason.SERVICE_ERROR: 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=load_log_level(), format=LOG_FORMAT)
    yield
    # Release preview files still held by the session's records.
    app.state.document_store.clear()


app = FastAPI(title="Travel Document Timeline API", lifespan=lifespan)
app.state.document_store = DocumentStore(load_upload_limits())
app.state.parse_tracker = ParseTracker()


@app.middleware("http")
async def api_prefix_alias(request, call_next):
    """Accept both `/path` and `/api/path` for frontend compatibility."""
    if request.scope.get("path", "").startswith("/api/"):
        request.scope["path"] = request.scope["path"][4:]
    return await call_next(request)


CORS_ALLOWED_ORIGINS = load_cors_origins()

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_document_store(request: Request) -> DocumentStore:
    return request.app.state.document_store


def get_parse_tracker(request: Request) -> ParseTracker:
    return request.app.state.parse_tracker


class UpdateDocumentRequest(BaseModel):
    display_name: str | None = None
    scheduled_at: datetime | None = None


class ParseDocumentRequest(BaseModel):
    provider: str | None = None
    api_key: str | None = None


def _not_found(exc: DocumentNotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={
            "status": "warning",
            "message": str(exc),
            "warnings": [],
            "document_id": exc.document_id,
        },
    )


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/config/frontend")
def frontend_config(store: DocumentStore = Depends(get_document_store)):
    return {
        "upload": store.limits.to_dict(),
        "parsing": {
            "supported_types": sorted(PARSE_SUPPORTED_TYPES),
            "max_size_bytes": load_parse_max_bytes(),
        },
    }


@app.post("/documents/upload")
async def upload_document(
    files: list[UploadFile] = File(...),
    store: DocumentStore = Depends(get_document_store),
    tracker: ParseTracker = Depends(get_parse_tracker),
):
    # Drops of several files use only the first one.
    upload = files[0]
    warnings: list[str] = []
    if len(files) > 1:
        warnings.append(f"Only the first of {len(files)} files was added.")

    content = await upload.read()
    try:
        document_id = store.add(upload.filename or "untitled", upload.content_type, content)
    except UploadRejectedError as exc:
        status_code = 415 if exc.result.reason == RejectReason.UNSUPPORTED_TYPE else 400
        return JSONResponse(
            status_code=status_code,
            content={
                "status": exc.result.status,
                "message": f"File validation failed: {exc.result.message}",
                "warnings": warnings + exc.result.warnings,
                "reason": exc.result.reason.value if exc.result.reason else None,
            },
        )

    return {
        "status": "success",
        "message": "Document added to the timeline.",
        "warnings": warnings,
        "document": record_view(store.get(document_id), tracker),
    }


@app.get("/documents")
def list_documents(
    store: DocumentStore = Depends(get_document_store),
    tracker: ParseTracker = Depends(get_parse_tracker),
):
    return build_timeline(store, tracker)


@app.patch("/documents/{document_id}")
def update_document(
    document_id: str,
    request: UpdateDocumentRequest,
    store: DocumentStore = Depends(get_document_store),
    tracker: ParseTracker = Depends(get_parse_tracker),
):
    try:
        record = store.update(
            document_id,
            display_name=request.display_name,
            scheduled_at=request.scheduled_at,
        )
    except DocumentNotFoundError as exc:
        return _not_found(exc)
    except ValueError as exc:
        return JSONResponse(
            status_code=400,
            content={"status": "error", "message": str(exc), "warnings": []},
        )

    return {"status": "success", "document": record_view(record, tracker)}


@app.delete("/documents/{document_id}")
def delete_document(document_id: str, store: DocumentStore = Depends(get_document_store)):
    try:
        store.remove(document_id)
    except DocumentNotFoundError as exc:
        return _not_found(exc)

    return {"status": "success", "message": "Document removed.", "document_id": document_id}


@app.get("/documents/{document_id}/file")
def document_file(
    document_id: str,
    download: bool = False,
    store: DocumentStore = Depends(get_document_store),
):
    try:
        record = store.get(document_id)
        preview_path = store.open_preview(document_id)
    except DocumentNotFoundError as exc:
        return _not_found(exc)

    as_attachment = download or preview_mode(record.content_type) == "download"
    return FileResponse(
        path=preview_path,
        media_type=record.content_type or "application/octet-stream",
        filename=record.filename,
        content_disposition_type="attachment" if as_attachment else "inline",
    )


@app.post("/documents/{document_id}/parse")
async def parse_stored_document(
    document_id: str,
    request: ParseDocumentRequest | None = None,
    store: DocumentStore = Depends(get_document_store),
    tracker: ParseTracker = Depends(get_parse_tracker),
):
    try:
        record = store.get(document_id)
    except DocumentNotFoundError as exc:
        return _not_found(exc)

    if not tracker.begin(document_id):
        return JSONResponse(
            status_code=409,
            content={
                "status": "warning",
                "message": "A parse for this document is already in progress.",
                "warnings": [],
            },
        )

    options = request or ParseDocumentRequest()
    try:
        result = await run_in_threadpool(
            parse_document,
            record.filename,
            record.content_type,
            record.content,
            provider=options.provider,
            api_key=options.api_key,
        )
    finally:
        tracker.finish(document_id)

    if isinstance(result, ParseFailure):
        return JSONResponse(
            status_code=PARSE_FAILURE_STATUS_CODES[result.reason],
            content=result.to_dict(),
        )

    updated = apply_parse_result(store, document_id, result)
    if updated is None:
        return JSONResponse(
            status_code=404,
            content={
                "status": "warning",
                "message": "Document was removed while it was being parsed.",
                "warnings": [],
                "parse": result.to_dict(),
            },
        )

    return {
        "status": "success",
        "message": "Document parsed.",
        "document": record_view(updated, tracker),
        "parse": result.to_dict(),
    }

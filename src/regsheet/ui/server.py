"""FastAPI server for the regsheet review API.

Routes are thin wrappers over the shared :class:`ReviewService`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from fastapi import Body, FastAPI, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, ValidationError

from regsheet.errors import RegsheetError
from regsheet.ui.service import ReviewService

# The singleton service is set at startup by ``create_app()``.
_service: ReviewService | None = None


def create_app(store_dir: Path) -> FastAPI:
    """Create the FastAPI application for a given store.

    Args:
        store_dir: Root of the regsheet store.

    Returns:
        Configured FastAPI instance.
    """
    global _service
    _service = ReviewService(store_dir=Path(store_dir))

    from regsheet import __version__
    from regsheet.logging.events import set_store_dir

    set_store_dir(_service.store_dir)

    app = FastAPI(title="regsheet", version=__version__)
    app.include_router(_api_router())
    return app


def _svc() -> ReviewService:
    """Get the singleton service, raising if not initialised."""
    if _service is None:
        raise HTTPException(500, "Service not initialised")
    return _service


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

_STATUS_BY_KIND: dict[str, int] = {
    "unsupported_format": 400,
    "not_editable": 400,
    "invalid_row_data": 400,
    "not_found": 404,
    "foreign_key_violation": 409,
    "storage_failure": 500,
}


def _http_error(exc: Exception) -> HTTPException:
    """Translate a service error into an HTTPException with a ``{kind, message}`` detail."""
    if isinstance(exc, RegsheetError):
        status = _STATUS_BY_KIND.get(exc.kind, 500)
        kind = exc.kind
    else:
        status = 400
        kind = "invalid_request"
    return HTTPException(status, {"kind": kind, "message": str(exc)})


# ---------------------------------------------------------------------------
# Request/response models
# ---------------------------------------------------------------------------


class FileCreateRequest(BaseModel):
    file_name: str
    model_type: str
    build_type: str
    release_date: str | None = None
    sheet_names: list[str] = []


class SheetCreateRequest(BaseModel):
    file_id: str
    sheet_name: str
    headers: list[str] = []
    data: list[dict[str, Any]] = []


class SheetDataUpdate(BaseModel):
    data: list[dict[str, Any]]


class CellEdit(BaseModel):
    row_index: int
    header: str
    value: str | None = ""


class EditsRequest(BaseModel):
    edits: list[CellEdit]


class CommentCreateRequest(BaseModel):
    sheet_id: str
    author: str
    comment: str
    row_index: int


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


def _api_router():
    from fastapi import APIRouter

    router = APIRouter(prefix="/api")

    # -- Files --

    @router.get("/regression_files")
    async def get_files(
        id: str | None = Query(None),
        model_type: str | None = Query(None),
        build_type: str | None = Query(None),
        release_date: str | None = Query(None),
    ) -> Any:
        try:
            if id is not None:
                return _svc().get_file(id)
            return _svc().list_files(model_type, build_type, release_date)
        except (RegsheetError, ValueError) as exc:
            raise _http_error(exc)

    @router.post("/regression_files")
    async def create_file(req: FileCreateRequest) -> dict[str, Any]:
        try:
            return _svc().create_file(req.model_dump())
        except (RegsheetError, ValueError) as exc:
            raise _http_error(exc)

    @router.get("/regression_files/{file_id}/integrity")
    async def file_integrity(file_id: str) -> dict[str, Any]:
        try:
            return _svc().check_file_integrity(file_id)
        except (RegsheetError, ValueError) as exc:
            raise _http_error(exc)

    # -- Sheets --

    @router.get("/regression_sheets")
    async def get_sheets(
        id: str | None = Query(None),
        file_id: str | None = Query(None),
    ) -> Any:
        if id is None and file_id is None:
            raise HTTPException(400, {"kind": "invalid_request", "message": "id or file_id is required"})
        try:
            if id is not None:
                return _svc().get_sheet(id)
            return _svc().list_sheets(file_id)
        except (RegsheetError, ValueError) as exc:
            raise _http_error(exc)

    @router.post("/regression_sheets")
    async def create_sheets(
        payload: dict[str, Any] | list[dict[str, Any]] = Body(...),
    ) -> Any:
        items = payload if isinstance(payload, list) else [payload]
        try:
            reqs = [SheetCreateRequest.model_validate(item) for item in items]
        except ValidationError as exc:
            raise HTTPException(422, exc.errors(include_url=False))
        try:
            created = _svc().create_sheets([r.model_dump() for r in reqs])
        except (RegsheetError, ValueError) as exc:
            raise _http_error(exc)
        return created if isinstance(payload, list) else created[0]

    @router.patch("/regression_sheets")
    async def update_sheet(req: SheetDataUpdate, id: str = Query(...)) -> dict[str, Any]:
        try:
            return _svc().update_sheet_data(id, req.data)
        except (RegsheetError, ValueError) as exc:
            raise _http_error(exc)

    @router.get("/regression_sheets/{sheet_id}/view")
    async def sheet_view(sheet_id: str) -> dict[str, Any]:
        try:
            return _svc().get_sheet_view(sheet_id)
        except (RegsheetError, ValueError) as exc:
            raise _http_error(exc)

    @router.post("/regression_sheets/{sheet_id}/edits")
    async def apply_edits(sheet_id: str, req: EditsRequest) -> dict[str, Any]:
        try:
            return _svc().apply_edits(sheet_id, [e.model_dump() for e in req.edits])
        except (RegsheetError, ValueError) as exc:
            raise _http_error(exc)

    # -- Comments --

    @router.get("/sheet_comments")
    async def list_comments(sheet_id: str = Query(...)) -> list[dict[str, Any]]:
        try:
            return _svc().list_comments(sheet_id)
        except (RegsheetError, ValueError) as exc:
            raise _http_error(exc)

    @router.post("/sheet_comments")
    async def create_comment(req: CommentCreateRequest) -> dict[str, Any]:
        try:
            return _svc().create_comment(req.sheet_id, req.author, req.comment, req.row_index)
        except (RegsheetError, ValueError) as exc:
            raise _http_error(exc)

    # -- Upload --

    @router.post("/upload")
    async def upload(
        file: UploadFile = File(...),
        model_type: str = Form(...),
        build_type: str = Form(...),
        release_date: str | None = Form(None),
    ) -> dict[str, Any]:
        data = await file.read()
        try:
            return _svc().upload_workbook(
                file_bytes=data,
                filename=file.filename or "",
                model_type=model_type,
                build_type=build_type,
                release_date=release_date or None,
            )
        except (RegsheetError, ValueError) as exc:
            raise _http_error(exc)

    # -- Catalog and dashboard --

    @router.get("/catalog")
    async def get_catalog() -> dict[str, Any]:
        return _svc().catalog()

    @router.get("/summary")
    async def get_summary() -> dict[str, Any]:
        return _svc().upload_summary()

    @router.get("/release_dates")
    async def get_release_dates(model_type: str | None = Query(None)) -> list[str]:
        return _svc().release_dates(model_type)

    # -- Event logs --

    def _inject_display_type(events: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Add display_type field to each event dict."""
        from regsheet.logging.events import display_event_type

        for evt in events:
            evt["display_type"] = display_event_type(evt.get("event_type", ""))
        return events

    @router.get("/events")
    async def get_events(
        level: str | None = Query(None),
        event_type: str | None = Query(None),
        file_id: str | None = Query(None),
        sheet_id: str | None = Query(None),
        n: int = Query(200, ge=1, le=2000),
    ) -> list[dict[str, Any]]:
        from regsheet.logging.sink import EventSink

        sink = EventSink(_svc().store_dir)
        events = sink.read_global(
            level=level,
            event_type=event_type,
            file_id=file_id,
            sheet_id=sheet_id,
            limit=n,
        )
        return _inject_display_type(events)

    return router

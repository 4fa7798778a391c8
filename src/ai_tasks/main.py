"""FastAPI application wiring for the generation task service.

Terms used in this file:
- Application factory: ``create_app`` builds a fresh app, which keeps tests isolated.
- app.state: holds the shared orchestrator (gateway, poller, cancellation, history).
- X-Account-Id: identifies the owning account; authentication happens upstream.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, Response

from .app.errors import TaskError
from .app.models import (
    CancelResult,
    ContentType,
    GenerateRequest,
    HistoryItem,
    HistoryPage,
    RateRequest,
    SubmitOptions,
    Task,
    WaitRequest,
)
from .app.orchestrator import TaskOrchestrator, build_orchestrator
from .config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[str, int] = {
    "validation_error": 422,
    "invalid_argument": 422,
    "not_found": 404,
    "task_failed": 409,
    "polling_timeout": 504,
    "transport_error": 502,
    "protocol_violation": 502,
    "storage_error": 503,
}

AccountId = Annotated[str, Header(alias="X-Account-Id", min_length=1)]


def create_app(
    *,
    orchestrator: TaskOrchestrator | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    logging.getLogger("ai_tasks").setLevel(settings.log_level.upper())

    app = FastAPI(title=settings.app_name, version="0.1.0")
    app.state.settings = settings
    app.state.orchestrator = orchestrator or build_orchestrator(settings)

    def _orchestrator(request: Request) -> TaskOrchestrator:
        return request.app.state.orchestrator

    @app.exception_handler(TaskError)
    async def handle_task_error(_: Request, exc: TaskError) -> JSONResponse:
        status_code = ERROR_STATUS_CODES.get(exc.kind, 500)
        logger.info("api_error kind=%s status_code=%s message=%s", exc.kind, status_code, exc)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def handle_unexpected_error(_: Request, exc: Exception) -> JSONResponse:
        logger.exception("api_error kind=internal_error error=%s", type(exc).__name__)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": "Internal server error",
                "details": {"exception": type(exc).__name__},
            },
        )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.post("/generate/{kind}", response_model=Task)
    async def generate(
        kind: str,
        payload: GenerateRequest,
        request: Request,
        account_id: AccountId,
    ) -> Task:
        return await _orchestrator(request).submit(
            account_id,
            kind,
            payload.parameters,
            SubmitOptions(mode=payload.mode, save_to_history=payload.save_to_history),
        )

    @app.get("/tasks", response_model=list[Task])
    async def list_tasks(request: Request, pending_only: bool = False) -> list[Task]:
        return await _orchestrator(request).list_tasks(pending_only=pending_only)

    @app.get("/tasks/{task_id}", response_model=Task)
    async def get_task(task_id: str, request: Request) -> Task:
        return await _orchestrator(request).get_task(task_id)

    @app.post("/tasks/{task_id}/wait", response_model=Task)
    async def wait_for_task(
        task_id: str,
        request: Request,
        payload: WaitRequest | None = None,
    ) -> Task:
        orchestrator_ = _orchestrator(request)
        body = payload or WaitRequest()
        options = orchestrator_.poll_options(
            interval_s=body.interval_s,
            max_attempts=body.max_attempts,
        )
        return await orchestrator_.poll(task_id, options)

    @app.post("/tasks/{task_id}/cancel", response_model=CancelResult)
    async def cancel_task(task_id: str, request: Request) -> CancelResult:
        return await _orchestrator(request).cancel(task_id)

    @app.get("/history", response_model=HistoryPage)
    def list_history(
        request: Request,
        account_id: AccountId,
        content_type: ContentType | None = None,
        limit: Annotated[int, Query(ge=1, le=100)] = settings.history_page_size,
        cursor: str | None = None,
    ) -> HistoryPage:
        return _orchestrator(request).history.list(
            account_id,
            content_type=content_type,
            limit=limit,
            cursor=cursor,
        )

    # Registered before /history/{item_id} so "favorites" is not read as an id.
    @app.get("/history/favorites", response_model=HistoryPage)
    def list_favorites(
        request: Request,
        account_id: AccountId,
        limit: Annotated[int, Query(ge=1, le=100)] = settings.history_page_size,
        cursor: str | None = None,
    ) -> HistoryPage:
        return _orchestrator(request).history.list_favorites(
            account_id, limit=limit, cursor=cursor
        )

    @app.get("/history/{item_id}", response_model=HistoryItem)
    def get_history_item(item_id: str, request: Request, account_id: AccountId) -> HistoryItem:
        return _orchestrator(request).history.get(account_id, item_id)

    @app.delete("/history/{item_id}", status_code=204)
    def delete_history_item(item_id: str, request: Request, account_id: AccountId) -> Response:
        _orchestrator(request).history.delete(account_id, item_id)
        return Response(status_code=204)

    @app.post("/history/{item_id}/toggle_favorite", response_model=HistoryItem)
    def toggle_favorite(item_id: str, request: Request, account_id: AccountId) -> HistoryItem:
        return _orchestrator(request).history.toggle_favorite(account_id, item_id)

    @app.post("/history/{item_id}/rate", response_model=HistoryItem)
    def rate_history_item(
        item_id: str,
        payload: RateRequest,
        request: Request,
        account_id: AccountId,
    ) -> HistoryItem:
        return _orchestrator(request).history.rate(account_id, item_id, payload.rating)

    return app


# Module-level app for `uvicorn ai_tasks.main:app`.
app = create_app()

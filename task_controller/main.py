"""
Task Controller - FastAPI Application

Device-facing HTTP boundary:
- POST /get     Poll: admit device/session, hand out and clear pending tasks
- POST /report  Report: resolve the task kind and notify the operator
- GET  /        Service info
- GET  /health  Service info plus registry counters

CONSTRAINTS:
- A poll never fails because of an unknown or refused device; it gets []
- Every report gets an acknowledgement status code
- Unknown task ids in reports are hard errors (404), never guessed
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request

from . import SERVICE_NAME, __version__
from .context import AppContext
from .errors import (
    ConcurrentAccessError,
    ControllerError,
    PayloadDecodeError,
    StateUnavailableError,
    TaskNotFoundError,
)
from .models import (
    GetTaskRequest,
    GetTaskResponse,
    ReportResponse,
    TaskItem,
    TaskStatusReport,
)

logger = logging.getLogger("task_controller")


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def get_context(request: Request) -> AppContext:
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise StateUnavailableError()
    return context


def _status_for(error: ControllerError) -> int:
    if isinstance(error, TaskNotFoundError):
        return 404
    if isinstance(error, PayloadDecodeError):
        return 422
    if isinstance(error, (StateUnavailableError, ConcurrentAccessError)):
        return 503
    return 400


def _http_error(error: ControllerError) -> HTTPException:
    status_code = _status_for(error)
    if status_code >= 500:
        logger.error(f"AppError: {error.message}")
    else:
        logger.warning(f"Request rejected: {error.message}")
    return HTTPException(status_code=status_code, detail=error.to_dict())


# -----------------------------------------------------------------------------
# FastAPI Application
# -----------------------------------------------------------------------------
def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """Build the HTTP app; the context may also be attached later."""
    app = FastAPI(
        title=SERVICE_NAME,
        description="Poll/report endpoints for MAA remote control clients",
        version=__version__
    )
    app.state.context = context

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------
    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {
            "service": SERVICE_NAME,
            "status": "running",
            "version": __version__
        }

    @app.get("/health")
    async def health_check(request: Request):
        """Detailed health check with registry counters."""
        context = getattr(request.app.state, "context", None)
        response = {
            "status": "healthy" if context is not None else "starting",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
        }
        if context is not None:
            try:
                response["registry"] = context.registry.stats()
            except ConcurrentAccessError as e:
                raise _http_error(e)
            response["allow_list"] = context.registry.allowed_devices is not None
        return response

    # -------------------------------------------------------------------------
    # Device Endpoints
    # -------------------------------------------------------------------------
    @app.post("/get", response_model=GetTaskResponse)
    async def get_task(req: GetTaskRequest, request: Request):
        """
        Poll for pending tasks.

        The device and session are created on first poll (subject to the
        allow-list); the returned tasks are removed from the queue.
        """
        try:
            context = get_context(request)
            tasks = context.registry.poll(req.device, req.user)
        except ControllerError as e:
            raise _http_error(e)

        return GetTaskResponse(tasks=[TaskItem(**task.to_dict()) for task in tasks])

    @app.post("/report", response_model=ReportResponse)
    async def report_status(req: TaskStatusReport, request: Request):
        """
        Accept a completion report and notify the operator.

        A resolved report is acknowledged with 200 even when the operator
        could not be notified; `notified` is false in that case.
        """
        logger.info(f"Report status: device={req.device} user={req.user} task={req.task}")
        try:
            context = get_context(request)
            resolution = await context.status_resolver().handle(req)
        except ControllerError as e:
            raise _http_error(e)

        if not resolution.delivered:
            logger.warning(f"Report {req.task} acknowledged without operator notification")
        return ReportResponse(
            status="ok",
            task_type=resolution.kind.value,
            notified=resolution.delivered,
        )

    return app

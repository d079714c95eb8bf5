from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles

from .bootstrap import RenderServices, build_services
from .configuration import make_runtime_config
from .coordinator import CoordinatorState
from .errors import JobNotFound, RenderServiceError
from .models import ErrorResponse, JobReceipt, JobStatusResponse, RenderRequest, RenderRequestBody

logger = logging.getLogger(__name__)

router = APIRouter()


def get_services(request: Request) -> RenderServices:
    return request.app.state.services


@router.get("/healthz")
def healthcheck(services: RenderServices = Depends(get_services)) -> Dict[str, str]:
    return {"status": "ok", "broker": "available" if services.queue.probe() else "unavailable"}


def _submit_render(project_id: str, version_id: str, user_id: Optional[str], services: RenderServices) -> Response:
    request = RenderRequest(
        project_id=project_id,
        version_id=version_id,
        requesting_user_id=user_id or services.config.api.default_user_id,
    )
    outcome = services.coordinator.submit(request)

    if outcome.mode == CoordinatorState.ENQUEUED:
        receipt = JobReceipt(job_id=outcome.job_id)
        return JSONResponse(status_code=202, content=receipt.model_dump(by_alias=True))

    artifact = outcome.artifact
    logger.info(f"Sending in-request render {artifact.filename} ({len(artifact.data)} bytes)")
    return Response(
        content=artifact.data,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{artifact.filename}"',
            "Cache-Control": "no-cache",
            "Access-Control-Expose-Headers": "Content-Disposition, Content-Length",
        },
    )


@router.post(
    "/render-requests",
    status_code=202,
    responses={
        200: {"content": {"application/pdf": {}}, "description": "Rendered in-request (queue unavailable)"},
        202: {"model": JobReceipt},
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
def create_render_request(
    body: RenderRequestBody,
    x_user_id: Optional[str] = Header(default=None),
    services: RenderServices = Depends(get_services),
) -> Response:
    return _submit_render(body.project_id, body.version_id, x_user_id, services)


@router.post("/projects/{project_id}/versions/{version_id}/export-pdf", status_code=202)
def export_version_pdf(
    project_id: str,
    version_id: str,
    x_user_id: Optional[str] = Header(default=None),
    services: RenderServices = Depends(get_services),
) -> Response:
    return _submit_render(project_id, version_id, x_user_id, services)


@router.get(
    "/render-requests/{job_id}",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
    responses={404: {"model": ErrorResponse}},
)
def get_render_request(job_id: str, services: RenderServices = Depends(get_services)) -> JobStatusResponse:
    job = services.queue.get_status(job_id)
    if job is None:
        raise JobNotFound("Render job not found.", details={"job_id": job_id})
    return JobStatusResponse(
        state=job.state,
        progress=job.progress,
        result_ref=job.result_ref,
        failure_reason=job.failure_reason,
    )


async def _render_error_handler(request: Request, exc: RenderServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    body = ErrorResponse(code=exc.code, message=exc.message, details=exc.details)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body))


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    body = ErrorResponse(
        code="INVALID_INPUT",
        message="projectId and versionId are required.",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(status_code=422, content=jsonable_encoder(body))


async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    body = ErrorResponse(code="INTERNAL_ERROR", message="Unexpected error while handling the request.")
    return JSONResponse(status_code=500, content=jsonable_encoder(body))


def create_app(services: Optional[RenderServices] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        services: Pre-built render services; built from the default
            configuration when omitted
    """
    services = services or build_services(make_runtime_config())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services.config.worker.embedded:
            services.worker.start()
        yield
        services.close()

    app = FastAPI(title="Script Render API", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(services.config.api.allowed_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RenderServiceError, _render_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unexpected_error_handler)

    artifact_root = services.local_artifact_root
    if artifact_root is not None:
        app.mount(services.config.storage.public_prefix, StaticFiles(directory=artifact_root), name="pdfs")

    app.include_router(router)
    return app


app = create_app()

"""
DispatchDesk - Main FastAPI Application
Work-order intake and technician dispatch service
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Optional

from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dispatchdesk.config import Settings
from dispatchdesk.container import Container, build_container
from dispatchdesk.errors import (
    DispatchDeskError,
    Forbidden,
    JobValidationError,
    Unauthenticated,
    UpstreamUnavailable,
)
from dispatchdesk.models.dispatch import RespondRequest
from dispatchdesk.models.job import (
    AssignRequest,
    CompleteRequest,
    DuplicateCheckRequest,
    Job,
    JobCreate,
    ParseRequest,
)

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO")),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def get_container(request: Request) -> Container:
    return request.app.state.container


async def current_user(
    container: Container = Depends(get_container),
    authorization: Optional[str] = Header(None),
) -> str:
    """Resolve the bearer token to a user id."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise Unauthenticated("Missing bearer token")
    return await container.store.get_user_id(authorization.split(" ", 1)[1].strip())


async def require_member(container: Container, org_id: str, user_id: str) -> None:
    rows = await container.store.select(
        "org_members", [("org_id", "eq", org_id), ("user_id", "eq", user_id)], limit=1
    )
    if not rows:
        raise Forbidden(f"Not a member of organization {org_id}")


async def bounded(container: Container, awaitable: Awaitable[Any]) -> Any:
    """Run one request's work under the request timeout."""
    try:
        return await asyncio.wait_for(awaitable, timeout=container.settings.request_timeout_seconds)
    except asyncio.TimeoutError:
        raise UpstreamUnavailable("timeout", "Request timed out waiting on an upstream service")


async def member_job(container: Container, job_id: str, user_id: str) -> Job:
    job = await container.lifecycle.get(job_id)
    await require_member(container, job.org_id, user_id)
    return job


def create_app(container: Optional[Container] = None) -> FastAPI:
    """Create the app; pass a container to skip building real services."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if container is None:
            app.state.container = build_container(Settings.from_env())
        else:
            app.state.container = container
        logger.info("DispatchDesk started")
        yield
        await app.state.container.lifecycle.drain()
        logger.info("DispatchDesk stopped")

    app = FastAPI(
        title="DispatchDesk",
        description="Work-order intake and technician dispatch service",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DispatchDeskError)
    async def dispatchdesk_error_handler(request: Request, exc: DispatchDeskError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content=JobValidationError.from_pydantic(exc).to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"error": "internal", "message": "Internal server error"})

    # Health check endpoints
    @app.get("/")
    async def root():
        return {"message": "DispatchDesk is running!", "status": "healthy"}

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": "DispatchDesk"}

    # Work-order intake endpoints
    @app.post("/work-orders/parse")
    async def parse_work_order(
        body: ParseRequest,
        user_id: str = Depends(current_user),
        container: Container = Depends(get_container),
    ):
        """Parse free text into a reviewable draft"""
        if not body.raw_text.strip():
            raise JobValidationError("Raw text is required", {"raw_text": "must not be empty"})
        logger.info(f"Parsing work order for user {user_id} ({len(body.raw_text)} chars)")
        result = await bounded(container, container.parser.parse(body.raw_text))
        return {
            "success": True,
            "data": result.draft.model_dump(mode="json"),
            "confidence": result.confidence,
            "fieldConfidence": result.field_confidence,
            "source": result.source,
        }

    @app.post("/work-orders/check-duplicate")
    async def check_duplicate(
        body: DuplicateCheckRequest,
        user_id: str = Depends(current_user),
        container: Container = Depends(get_container),
    ):
        await require_member(container, body.org_id, user_id)
        duplicates = await bounded(
            container,
            container.detector.find_duplicates(body.org_id, body.trade, body.address, exclude_job_id=body.exclude_id),
        )
        return {
            "hasDuplicates": bool(duplicates),
            "duplicates": [d.model_dump(mode="json") for d in duplicates],
        }

    @app.get("/maps/geocode")
    async def geocode(
        q: str = Query(..., min_length=1),
        user_id: str = Depends(current_user),
        container: Container = Depends(get_container),
    ):
        result = await bounded(container, container.geocoder.geocode(q))
        return result.model_dump()

    # Jobs endpoints
    @app.post("/jobs", status_code=201)
    async def create_job(
        body: JobCreate,
        user_id: str = Depends(current_user),
        container: Container = Depends(get_container),
    ):
        """Validate, gate and create a job; dispatch runs in the background"""
        await require_member(container, body.org_id, user_id)
        result = await bounded(container, container.intake.submit(body, user_id=user_id))
        content = {
            "job": result.job.to_row(),
            "duplicate": result.duplicate,
            "dispatchScheduled": result.dispatch_scheduled,
        }
        if result.duplicate:
            return JSONResponse(status_code=200, content=content)
        return content

    @app.get("/jobs/{job_id}")
    async def get_job(job_id: str, user_id: str = Depends(current_user), container: Container = Depends(get_container)):
        job = await bounded(container, member_job(container, job_id, user_id))
        return {"job": job.to_row()}

    @app.delete("/jobs/{job_id}")
    async def delete_job(job_id: str, user_id: str = Depends(current_user), container: Container = Depends(get_container)):
        await bounded(container, member_job(container, job_id, user_id))
        await bounded(container, container.lifecycle.delete(job_id, actor_id=user_id))
        return {"message": "Job deleted successfully"}

    @app.post("/jobs/{job_id}/assign")
    async def assign_job(
        job_id: str,
        body: AssignRequest,
        user_id: str = Depends(current_user),
        container: Container = Depends(get_container),
    ):
        await bounded(container, member_job(container, job_id, user_id))
        job = await bounded(container, container.lifecycle.assign(job_id, body.technician_id, actor_id=user_id))
        return {"message": "Technician assigned", "job": job.to_row()}

    @app.delete("/jobs/{job_id}/assign")
    async def unassign_job(job_id: str, user_id: str = Depends(current_user), container: Container = Depends(get_container)):
        await bounded(container, member_job(container, job_id, user_id))
        job = await bounded(container, container.lifecycle.unassign(job_id, actor_id=user_id))
        return {"message": "Technician unassigned", "job": job.to_row()}

    @app.post("/jobs/{job_id}/complete")
    async def complete_job(
        job_id: str,
        body: Optional[CompleteRequest] = Body(None),
        user_id: str = Depends(current_user),
        container: Container = Depends(get_container),
    ):
        body = body or CompleteRequest()
        await bounded(container, member_job(container, job_id, user_id))
        job = await bounded(
            container, container.lifecycle.complete(job_id, body.rating, body.notes, actor_id=user_id)
        )
        return {"message": "Job completed", "job": job.to_row(), "rating": body.rating}

    @app.post("/jobs/{job_id}/archive")
    async def archive_job(job_id: str, user_id: str = Depends(current_user), container: Container = Depends(get_container)):
        await bounded(container, member_job(container, job_id, user_id))
        job = await bounded(container, container.lifecycle.archive(job_id, actor_id=user_id))
        return {"message": "Job archived", "job": job.to_row()}

    @app.post("/jobs/{job_id}/dispatch")
    async def dispatch_job(job_id: str, user_id: str = Depends(current_user), container: Container = Depends(get_container)):
        """Manually re-trigger dispatch for a job still waiting on technicians"""
        job = await bounded(container, member_job(container, job_id, user_id))
        result = await bounded(container, container.lifecycle.run_dispatch(job))
        return result.model_dump(mode="json")

    @app.get("/jobs/{job_id}/technicians")
    async def job_technicians(job_id: str, user_id: str = Depends(current_user), container: Container = Depends(get_container)):
        await bounded(container, member_job(container, job_id, user_id))
        technicians = await bounded(container, container.lifecycle.list_candidates(job_id))
        return {"technicians": technicians}

    @app.post("/jobs/{job_id}/respond")
    async def respond(job_id: str, body: RespondRequest, container: Container = Depends(get_container)):
        """Technician reply from the outreach email; the outreach id is the credential"""
        record = await bounded(container, container.lifecycle.record_response(job_id, body.outreach_id, body.response))
        return {"message": "Response recorded", "outreach": record.model_dump(mode="json")}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "dispatchdesk.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("DEBUG", "false").lower() == "true"
    )

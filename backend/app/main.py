"""Main FastAPI application for column bucketing."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.middleware import LoggingMiddleware, SecurityHeadersMiddleware
from app.api.routes_analyses import router as analyses_router
from app.api.routes_jobs import router as jobs_router
from app.api.routes_workbooks import router as workbooks_router
from app.core.config import settings
from app.core.exceptions import BaseServiceException
from app.core.logging import configure_logging, get_logger
from app.services.analysis_pipeline import AnalysisPipeline
from app.services.job_queue import AnalysisQueue
from app.services.job_store import JobStore
from app.services.llm import LLMClient
from app.services.storage import RecordStore


configure_logging()
logger = get_logger(__name__)


async def service_exception_handler(request: Request, exc: BaseServiceException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("service_error", path=request.url.path, error=exc.message, error_code=exc.error_code)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "error_code": exc.error_code, "details": exc.details},
    )


def create_app(
    data_dir: Optional[str] = None,
    llm_factory: Callable[[], LLMClient] = LLMClient,
) -> FastAPI:
    data_dir = data_dir or settings.data_dir
    record_store = RecordStore(data_dir)
    job_store = JobStore(record_store)
    pipeline = AnalysisPipeline(record_store, job_store, llm_factory=llm_factory, data_dir=data_dir)
    queue = AnalysisQueue(pipeline)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("starting column-bucketer", version=settings.app_version, env=settings.env, data_dir=data_dir)
        yield
        await queue.shutdown()
        logger.info("shutting down column-bucketer")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Classify the distinct values of a column into a bucket taxonomy",
        docs_url="/docs",
        redoc_url=None,
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.data_dir = data_dir
    app.state.record_store = record_store
    app.state.job_store = job_store
    app.state.analysis_queue = queue
    app.state.llm_factory = llm_factory

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(BaseServiceException, service_exception_handler)

    # Routers
    app.include_router(workbooks_router)
    app.include_router(jobs_router)
    app.include_router(analyses_router)

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse(content={"ok": True, "pending_jobs": queue.pending})

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.port, reload=settings.is_dev)

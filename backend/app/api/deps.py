"""Request-scoped accessors for the stores and queue held on app state."""

from fastapi import Request

from app.services.job_queue import AnalysisQueue
from app.services.job_store import JobStore
from app.services.storage import RecordStore


def get_record_store(request: Request) -> RecordStore:
    return request.app.state.record_store


def get_job_store(request: Request) -> JobStore:
    return request.app.state.job_store


def get_queue(request: Request) -> AnalysisQueue:
    return request.app.state.analysis_queue

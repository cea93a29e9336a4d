"""Ingest API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from context_coach.api.dependencies import get_ingestion
from context_coach.ingest.pipeline import IngestionCoordinator
from context_coach.models.dto import (
    ArticleIngestRequest,
    DocsIngestRequest,
    JobResponse,
    PdfIngestRequest,
    TranscriptIngestRequest,
)
from context_coach.models.entities import IngestionStatus

router = APIRouter()


@router.post("/pdf", response_model=JobResponse, status_code=status.HTTP_202_ACCEPTED, summary="Ingest a PDF book")
async def ingest_pdf(
    request: PdfIngestRequest,
    coordinator: IngestionCoordinator = Depends(get_ingestion),
) -> JobResponse:
    job = coordinator.submit_pdf(
        request.content_base64,
        request.title,
        author=request.author,
        technology=request.technology,
        parent_document_id=request.parent_document_id,
    )
    return JobResponse.from_entity(job)


@router.post(
    "/transcript",
    response_model=JobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ingest a video transcript",
)
async def ingest_transcript(
    request: TranscriptIngestRequest,
    coordinator: IngestionCoordinator = Depends(get_ingestion),
) -> JobResponse:
    job = coordinator.submit_transcript(
        request.transcript,
        request.title,
        author=request.author,
        technology=request.technology,
        parent_document_id=request.parent_document_id,
        source_url=request.source_url,
    )
    return JobResponse.from_entity(job)


@router.post(
    "/docs",
    response_model=JobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Crawl and ingest a documentation site",
)
async def ingest_docs(
    request: DocsIngestRequest,
    coordinator: IngestionCoordinator = Depends(get_ingestion),
) -> JobResponse:
    job = coordinator.submit_docs(
        request.url,
        request.title,
        max_pages=request.max_pages,
        technology=request.technology,
        parent_document_id=request.parent_document_id,
    )
    return JobResponse.from_entity(job)


@router.post(
    "/article",
    response_model=JobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ingest a markdown article",
)
async def ingest_article(
    request: ArticleIngestRequest,
    coordinator: IngestionCoordinator = Depends(get_ingestion),
) -> JobResponse:
    job = coordinator.submit_article(
        request.markdown,
        request.title,
        author=request.author,
        technology=request.technology,
        parent_document_id=request.parent_document_id,
        source_url=request.source_url,
    )
    return JobResponse.from_entity(job)


@router.get("/jobs", response_model=list[JobResponse], summary="List ingestion jobs")
async def list_jobs(
    status_filter: IngestionStatus | None = Query(default=None, alias="status"),
    limit: int = 100,
    coordinator: IngestionCoordinator = Depends(get_ingestion),
) -> list[JobResponse]:
    return [JobResponse.from_entity(job) for job in coordinator.list_jobs(status=status_filter, limit=limit)]


@router.get("/jobs/{job_id}", response_model=JobResponse, summary="Get one ingestion job")
async def get_job(job_id: str, coordinator: IngestionCoordinator = Depends(get_ingestion)) -> JobResponse:
    job = coordinator.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobResponse.from_entity(job)


@router.delete("/jobs/{job_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a job and its content")
async def delete_job(job_id: str, coordinator: IngestionCoordinator = Depends(get_ingestion)) -> None:
    if not await coordinator.delete_job(job_id):
        raise HTTPException(status_code=404, detail="Job not found")


__all__ = ["router"]

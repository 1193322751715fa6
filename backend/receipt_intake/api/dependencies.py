"""Common dependencies for FastAPI routes."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from receipt_intake.services.pipeline import EmailPipeline


def get_pipeline(request: Request) -> EmailPipeline:
    """Return the pipeline created by the app lifespan."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Pipeline not started")
    return pipeline

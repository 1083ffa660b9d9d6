from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from services.metrics import render_prometheus

router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=PlainTextResponse)
def metrics():
    return PlainTextResponse(content=render_prometheus(), media_type="text/plain; version=0.0.4")

import logging
from dataclasses import asdict

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from ragchat.api.rag import router as rag_router
from ragchat.config import get_config
from ragchat.logging_config import configure_logging
from ragchat.services.rag import RagOrchestrator, get_rag_service
from ragchat.telemetry import emit_app_startup_event

configure_logging()

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Document Chat API")
app.include_router(rag_router)


@app.on_event("startup")
async def _log_startup() -> None:
    emit_app_startup_event(config=asdict(get_config()))


@app.get("/", response_class=PlainTextResponse)
def read_root() -> str:
    """Healthcheck endpoint for the service."""
    return "ok"


@app.get("/healthz", response_class=PlainTextResponse)
def healthcheck() -> str:
    """Liveness probe used by container orchestrators."""
    return "ok"


@app.get("/readyz", response_class=PlainTextResponse)
def readiness_probe(rag_service: RagOrchestrator = Depends(get_rag_service)) -> str:
    """Readiness probe that ensures the embedder and the vector index respond."""

    failures = rag_service.check_readiness()
    if failures:
        detail = "; ".join(f"{name}_unavailable: {reason}" for name, reason in sorted(failures.items()))
        LOGGER.warning("Readiness probe failed: %s", detail)
        raise HTTPException(status_code=503, detail=detail)
    return "ok"

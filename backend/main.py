import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from backend.routers import files
from backend.services.transient_refs import transient_references

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("fileportal.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("File portal API starting up")
    logger.debug("Registered routers: files")
    yield
    if transient_references.pending:
        logger.warning(
            "Shutting down with %d transient references still pending",
            transient_references.pending,
        )
    logger.info("Shutdown complete")


app = FastAPI(title="File Portal API", version="1.0.0", lifespan=lifespan)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.debug(">>> %s %s", request.method, request.url.path)
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.debug(
        "<<< %s %s | status=%d | %.1fms",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(files.router, prefix="/api/v1/files", tags=["files"])


@app.get("/api/v1/health")
async def health():
    logger.debug("Health check hit")
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run("backend.main:app", host="0.0.0.0", port=8000)

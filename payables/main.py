"""FastAPI entry point for the payables desk."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from payables import __version__
from payables.config import LOG_LEVEL
from payables.database import init_db
from payables.routers import batches, payables

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    yield


app = FastAPI(title="Payables Desk", version=__version__, lifespan=lifespan)

app.include_router(payables.router)
app.include_router(batches.router)


@app.get("/health")
def health() -> Response:
    """Simple health endpoint for load balancers and platform checks."""
    return Response(content='{"status":"ok"}', media_type="application/json")


@app.exception_handler(ValueError)
async def value_error_as_bad_request(request: Request, exc: ValueError):
    """Report domain input errors (unknown earnings class, bad ids) as 400 JSON."""
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import API_PREFIX, CORS_ORIGINS, DERIVATIVES_DIR, LOG_FORMAT, LOG_LEVEL, MEDIA_DIR, UPLOAD_DIR
from database import Base, engine
from routers import content
from status import InvalidStatusTransition, StaleStatusError

# --------------------------------------------------------------------------
# --- Configuration & Setup ---
# --------------------------------------------------------------------------

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    for directory in (MEDIA_DIR, UPLOAD_DIR, DERIVATIVES_DIR):
        os.makedirs(directory, exist_ok=True)
    Base.metadata.create_all(bind=engine)
    logging.info("🚀 Content pipeline ready")
    yield


app = FastAPI(
    title="Content Pipeline Backend",
    description="Uploads media, processes it into optimized derivatives and tracks every item's status.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InvalidStatusTransition)
@app.exception_handler(StaleStatusError)
async def status_conflict_handler(request: Request, exc: Exception):
    logging.warning(f"Status conflict on {request.url.path}: {exc}")
    return JSONResponse(status_code=409, content={"detail": str(exc)})


app.include_router(content.router, prefix=API_PREFIX)


@app.get("/")
def read_root():
    return {"message": "Content Pipeline Backend is running.", "docs": "/docs"}

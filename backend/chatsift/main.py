import logging
import time
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from pathlib import Path

# Load .env from backend directory before any service reads its config
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(dotenv_path=env_path)

from chatsift.api import config, context, files, uploads
from chatsift.observability import (
    TRACE_HEADER,
    log_request,
    request_trace,
    setup_logging,
)
from chatsift.services import search_index

setup_logging()
logger = logging.getLogger(__name__)
logger.info("Loading env from: %s", env_path.absolute())

@asynccontextmanager
async def lifespan(app: FastAPI):
    if search_index.is_search_enabled():
        logger.info("External search index configured")
    else:
        logger.info("No external search index configured, using local search only")
    yield
    search_index.close_client()

app = FastAPI(title="ChatSift Search API", lifespan=lifespan)

@app.middleware("http")
async def trace_id_middleware(request: Request, call_next):
    with request_trace(request.headers.get(TRACE_HEADER)) as trace_id:
        started = time.perf_counter()
        response = await call_next(request)
        log_request(request.method, request.url.path, response.status_code, (time.perf_counter() - started) * 1000)
    response.headers[TRACE_HEADER] = trace_id
    return response

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(context.router, prefix="/api/context", tags=["context"])
app.include_router(files.router, prefix="/api/files", tags=["files"])
app.include_router(uploads.router, prefix="/api/uploads", tags=["uploads"])
app.include_router(config.router, prefix="/api/config", tags=["config"])

@app.get("/")
async def root():
    return {"message": "ChatSift Search API"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("chatsift.main:app", host="127.0.0.1", port=8003, reload=True)

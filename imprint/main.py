import mimetypes
import threading
import time
from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from imprint import __version__, config
from imprint.core.database import RecordStore, create_record_store
from imprint.core.errors import NotFound, ProvenanceError
from imprint.core.utils import configure_logging, format_file_size, validate_hex
from imprint.models.record import ProvenanceRecord, RecordCreate, RecordSummary
from imprint.models.similarity import (
    CreateResponse,
    DeleteRequest,
    ErrorResponse,
    FingerprintResponse,
    HealthResponse,
    VerifyRequest,
    VerifyResponse,
)
from imprint.services import fingerprint, image_hash
from imprint.services.matching import MatchResolver
from imprint.services.provenance import authorize_deletion, register_record

configure_logging(json_logs=True, level=config.LOG_LEVEL)

logger = structlog.get_logger()

# Global record store
record_store: Optional[RecordStore] = None
_record_store_lock = threading.Lock()


def get_record_store() -> RecordStore:
    global record_store
    with _record_store_lock:
        if record_store is None:
            record_store = create_record_store()
    return record_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting Imprint API", record_store=config.RECORD_STORE)
    store = get_record_store()
    if store.check_connection():
        logger.info("Record store connection verified")
    else:
        logger.warning("Record store connection check failed")

    yield

    logger.info("Shutting down Imprint API")
    store.close()


app = FastAPI(
    title="Imprint API",
    description="Signed content provenance records with exact and perceptual lookup",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed Input"},
        404: {"model": ErrorResponse, "description": "Not Found"},
        500: {"model": ErrorResponse, "description": "Internal Server Error"},
    },
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", response_model=dict)
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Imprint API",
        "version": __version__,
        "description": "Signed content provenance records",
        "signature_algorithm": config.SIGNATURE_ALGORITHM,
        "schema_version": config.SCHEMA_VERSION,
        "docs_url": "/docs",
        "health_url": "/health",
    }


@app.get("/health", response_model=HealthResponse)
def health_check(store: RecordStore = Depends(get_record_store)):
    """Health check endpoint with record store status."""
    try:
        store_healthy = store.check_connection()
        components = {
            "record_store": "healthy" if store_healthy else "unhealthy",
            "record_store_stats": store.stats() if store_healthy else {},
            "similarity_threshold": config.SIMILARITY_THRESHOLD,
        }
        return HealthResponse(
            status="healthy" if store_healthy else "degraded",
            version=__version__,
            components=components,
        )
    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return HealthResponse(status="unhealthy", version=__version__, components={"error": str(e)})


@app.post("/records", response_model=CreateResponse, status_code=status.HTTP_201_CREATED)
def create_record(record: RecordCreate, store: RecordStore = Depends(get_record_store)):
    """
    Register a signed provenance record.

    The record is rejected unless its identity, hashes and signature all
    check out against the submitted fields.
    """
    stored = register_record(store, record)
    return CreateResponse(id=stored.id, message="Provenance record created")


@app.get("/records", response_model=List[RecordSummary])
def list_records(
    limit: int = Query(config.RECORD_LIST_LIMIT, ge=1, le=500),
    store: RecordStore = Depends(get_record_store),
):
    """Most recently signed records, newest first."""
    return [RecordSummary.from_record(r) for r in store.list_recent(limit)]


@app.get("/records/by-hash/{content_hash}", response_model=List[ProvenanceRecord])
def get_records_by_hash(content_hash: str, store: RecordStore = Depends(get_record_store)):
    content_hash = validate_hex(content_hash, "content_hash", fingerprint.CONTENT_HASH_LENGTH)
    records = store.find_by_content_hash(content_hash)
    if not records:
        raise NotFound("No records found for this hash")
    return records


@app.get("/records/{record_id}", response_model=ProvenanceRecord)
def get_record(record_id: str, store: RecordStore = Depends(get_record_store)):
    record = store.find_by_id(record_id)
    if record is None:
        raise NotFound(resource_id=record_id)
    return record


@app.delete("/records/{record_id}", response_model=dict)
def delete_record(record_id: str, request: DeleteRequest, store: RecordStore = Depends(get_record_store)):
    """
    Delete a record, authorized by a fresh signature over delete:<id>:<timestamp>
    from the record's own key. With verify_only the check runs but nothing is deleted.
    """
    outcome = authorize_deletion(
        store,
        record_id,
        timestamp=request.timestamp,
        signature=request.signature,
        verify_only=request.verify_only,
    )
    if outcome == "verified":
        return {"verified": True}
    return {"success": True}


@app.post("/verify", response_model=VerifyResponse)
def verify(request: VerifyRequest, store: RecordStore = Depends(get_record_store)):
    """
    Look up provenance for a candidate file's fingerprints.

    With record_id, compare against that record only. Otherwise exact
    matches are returned first, then perceptual matches within the
    similarity threshold. Signatures are re-verified on every match.
    """
    resolver = MatchResolver(store)
    if request.record_id:
        result = resolver.check_record(request.record_id, request.content_hash)
    else:
        result = resolver.resolve(request.content_hash, request.perceptual_hash)
    return result.to_response()


@app.post("/fingerprint", response_model=FingerprintResponse)
async def fingerprint_file(file: UploadFile = File(..., description="File to fingerprint; it is not stored")):
    """Compute the content hash and, for images, the perceptual hash of an uploaded file."""
    start_time = time.time()
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Filename is required")

    data = await file.read()
    if len(data) > config.MAX_FILE_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File size exceeds maximum allowed size of {format_file_size(config.MAX_FILE_SIZE)}",
        )

    content_type = file.content_type or mimetypes.guess_type(file.filename)[0] or "application/octet-stream"
    phash = image_hash.optional_perceptual_hash(data, content_type)

    response = FingerprintResponse(
        file_name=file.filename,
        content_type=content_type,
        file_size=len(data),
        content_hash=fingerprint.content_hash(data),
        perceptual_hash=phash,
    )
    logger.info("Fingerprinted upload",
                file_name=file.filename,
                content_type=content_type,
                file_size=format_file_size(len(data)),
                processing_time_ms=round((time.time() - start_time) * 1000, 2))
    return response


@app.exception_handler(ProvenanceError)
async def provenance_exception_handler(request, exc: ProvenanceError):
    log = logger.error if exc.status_code >= 500 else logger.info
    log("Request rejected", url=str(request.url), method=request.method, error=exc.code, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error("Unhandled exception",
                 url=str(request.url), method=request.method, error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_server_error", "message": "An unexpected error occurred"},
    )


if __name__ == "__main__":
    uvicorn.run(
        "imprint.main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=config.DEBUG,
        log_config=None,
    )

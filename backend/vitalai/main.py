"""FastAPI application main file."""
from fastapi import Depends, FastAPI, File, Header, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from vitalai.models import (
    ChainResponse,
    DocumentListItem,
    DocumentRecord,
    FeedbackEntry,
    FeedbackListResponse,
    FeedbackRequest,
    FeedbackResponse,
    GenerateRequest,
    GenerateResponse,
    GenerationParametersModel,
    ParametersResponse,
    VerificationResponse,
)
from vitalai.config import settings
from vitalai.database.db import AsyncSessionLocal, close_db, init_db
from vitalai.exceptions import DocumentNotFound, GenerationUnavailable, StorageUnavailable
from vitalai.logging_config import configure_logging
from vitalai.services.blob_storage import build_blob_storage
from vitalai.services.document_service import DocumentService
from vitalai.services.generation_service import GenerationService
from vitalai.services.key_value_store import build_key_value_store
from vitalai.services.tuning_service import FeedbackEvent, ParameterTuningService
from contextlib import asynccontextmanager
from typing import Dict, List, Optional
import logging

configure_logging(settings.log_level, settings.log_dir)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown."""
    await init_db()

    tuning_service = ParameterTuningService(
        storage=build_key_value_store(
            settings.tuning_storage_backend, AsyncSessionLocal, settings.store_timeout_seconds
        ),
        window_days=settings.feedback_window_days,
        interval_seconds=settings.analysis_interval_hours * 60 * 60,
        min_feedback=settings.min_feedback_count,
    )
    await tuning_service.initialize()

    app.state.tuning_service = tuning_service
    app.state.document_service = DocumentService(
        build_blob_storage(settings), AsyncSessionLocal, timeout=settings.store_timeout_seconds
    )
    app.state.generation_service = GenerationService(
        tuning_service,
        api_key=settings.llm_api_key,
        base_url=settings.llm_base_url,
        model=settings.llm_model,
    )
    yield
    await tuning_service.shutdown()
    await close_db()


# Initialize FastAPI app with lifespan handler
app = FastAPI(
    title="VitalAI API",
    description="Feedback-tuned generation parameters and verifiable document storage",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify actual origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_tuning_service(request: Request) -> ParameterTuningService:
    return request.app.state.tuning_service


def get_document_service(request: Request) -> DocumentService:
    return request.app.state.document_service


def get_generation_service(request: Request) -> GenerationService:
    return request.app.state.generation_service


def get_owner(x_user_id: Optional[str] = Header(None)) -> str:
    """Identity of the caller, set by the authenticating proxy."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="User not authenticated")
    return x_user_id.strip()


def _parameters_model(params) -> GenerationParametersModel:
    return GenerationParametersModel(**params.to_dict())


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "VitalAI API",
        "version": "1.0.0",
    }


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "vitalai"
    }


@app.post("/api/feedback", response_model=FeedbackResponse)
async def submit_feedback(
    request: FeedbackRequest,
    tuning_service: ParameterTuningService = Depends(get_tuning_service),
):
    """
    Record a rating for a generated response.

    Storage problems do not fail the request; the feedback is kept in memory.
    """
    if not request.response_id.strip() or not request.response_type.strip():
        raise HTTPException(
            status_code=400,
            detail="Missing required fields: response_id or response_type"
        )

    try:
        event = FeedbackEvent(
            response_id=request.response_id,
            response_type=request.response_type,
            rating=request.rating,
            comment=request.comment,
            context=request.context,
        )
        await tuning_service.record_feedback(event)
        return FeedbackResponse(
            success=True,
            message="Feedback recorded successfully",
            feedback_id=event.id
        )
    except Exception as e:
        logger.error(
            "Error in feedback endpoint",
            extra={"response_id": request.response_id, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@app.get("/api/feedback", response_model=FeedbackListResponse)
async def list_feedback(tuning_service: ParameterTuningService = Depends(get_tuning_service)):
    """Return all recorded feedback (admin purposes only)."""
    entries = [FeedbackEntry(**event.to_dict()) for event in tuning_service.feedback()]
    return FeedbackListResponse(feedback=entries, count=len(entries))


@app.get("/api/parameters", response_model=Dict[str, GenerationParametersModel])
async def list_parameters(tuning_service: ParameterTuningService = Depends(get_tuning_service)):
    return {key: _parameters_model(params) for key, params in tuning_service.all_parameters().items()}


@app.get("/api/parameters/{response_type}", response_model=ParametersResponse)
async def get_parameters(response_type: str, tuning_service: ParameterTuningService = Depends(get_tuning_service)):
    """Tuned parameters for a response type; unknown types get the defaults."""
    return ParametersResponse(
        response_type=response_type,
        parameters=_parameters_model(tuning_service.get_parameters(response_type))
    )


@app.post("/api/parameters/analyze", response_model=Dict[str, GenerationParametersModel])
async def analyze_feedback(tuning_service: ParameterTuningService = Depends(get_tuning_service)):
    """Run the feedback analysis now instead of waiting for the daily run."""
    await tuning_service.analyze_and_update()
    return {key: _parameters_model(params) for key, params in tuning_service.all_parameters().items()}


@app.post("/api/generate", response_model=GenerateResponse)
async def generate(
    request: GenerateRequest,
    generation_service: GenerationService = Depends(get_generation_service),
):
    if not request.prompt or not request.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt cannot be empty")

    try:
        result = await run_in_threadpool(generation_service.generate, request.prompt, request.response_type)
    except GenerationUnavailable as e:
        logger.error("Generation failed", extra={"response_type": request.response_type, "error": str(e)})
        raise HTTPException(status_code=503, detail=str(e))

    return GenerateResponse(
        response_id=result.response_id,
        response_type=result.response_type,
        text=result.text,
        parameters=_parameters_model(result.parameters)
    )


@app.post("/api/documents", response_model=DocumentRecord)
async def upload_document(
    file: UploadFile = File(...),
    owner: str = Depends(get_owner),
    document_service: DocumentService = Depends(get_document_service),
):
    """Upload a document and append its block to the verification chain."""
    content = await file.read()
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File size exceeds {settings.max_upload_bytes // (1024 * 1024)}MB limit"
        )

    try:
        record = await document_service.upload_and_chain(
            filename=file.filename or "",
            content=content,
            owner=owner,
            content_type=file.content_type or "",
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageUnavailable as e:
        logger.error(
            "Document upload error",
            extra={"owner": owner, "document_name": file.filename, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=503, detail=str(e))

    return DocumentRecord.model_validate(record)


@app.get("/api/documents", response_model=List[DocumentListItem])
async def list_documents(
    owner: str = Depends(get_owner),
    document_service: DocumentService = Depends(get_document_service),
):
    try:
        summaries = await document_service.list_documents(owner)
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    return [
        DocumentListItem(
            name=summary.name,
            url=summary.url,
            size=summary.size,
            content_type=summary.content_type,
            stored=summary.stored,
            verification=DocumentRecord.model_validate(summary.record) if summary.record else None,
        )
        for summary in summaries
    ]


@app.get("/api/documents/chain", response_model=ChainResponse)
async def get_chain(document_service: DocumentService = Depends(get_document_service)):
    """The full chain in insertion order and the result of walking it."""
    try:
        records = await document_service.chain()
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    walk = await document_service.walk(records)
    return ChainResponse(
        records=[DocumentRecord.model_validate(record) for record in records],
        length=len(records),
        visited=len(walk.visited),
        reached_sentinel=walk.reached_sentinel,
        intact=walk.intact,
        breaks=walk.breaks,
        forks=walk.forks,
    )


@app.get("/api/documents/{name}/download")
async def download_document(
    name: str,
    document_service: DocumentService = Depends(get_document_service),
):
    try:
        content = await document_service.download_document(name)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail=f"Document {name} not found")
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    return Response(
        content=content,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{name}"'},
    )


@app.post("/api/documents/{name}/verify", response_model=VerificationResponse)
async def verify_document(
    name: str,
    owner: Optional[str] = Header(None, alias="X-User-Id"),
    document_service: DocumentService = Depends(get_document_service),
):
    """Re-hash the stored bytes and compare with the recorded hash."""
    valid = await document_service.verify_document(name, owner=owner)
    return VerificationResponse(document_name=name, valid=valid)


@app.delete("/api/documents/{name}")
async def delete_document(
    name: str,
    owner: str = Depends(get_owner),
    document_service: DocumentService = Depends(get_document_service),
):
    try:
        await document_service.delete_document(name, owner)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail=f"Document {name} not found")
    except StorageUnavailable as e:
        logger.error(
            "Document deletion error",
            extra={"owner": owner, "document_name": name, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=503, detail=str(e))

    return {"message": "Document deleted successfully", "document_name": name}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

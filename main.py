# Load environment variables FIRST before any imports
from dotenv import load_dotenv
load_dotenv()

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Callable, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import print_settings, settings
from error_handling import (
    InvalidRequestError,
    ModelCallError,
    ModelNotConfiguredError,
    SourceExtractionError,
)
from generation import QuestionGenerator
from generation_log import GenerationLogStore
from logger import performance_monitor, request_logger
from model_clients import ModelClient, build_model_client
from processing import extract_text
from prompts import QUESTION_TEMPLATES, question_type_codes
from schemas import (
    BatchLogRecord,
    GenerateRequest,
    GenerateResponse,
    ModelSelector,
    OriginMetadata,
    YouTubeGenerateRequest,
)
from youtube_transcripts import extract_video_id, fetch_transcript

logger = logging.getLogger("quizgen.api")

GeneratorFactory = Callable[[str], QuestionGenerator]


@lru_cache(maxsize=None)
def get_model_client(mode: str) -> ModelClient:
    """One client (and circuit breaker) per provider mode."""
    return build_model_client(mode, settings)


@lru_cache(maxsize=1)
def get_log_store() -> GenerationLogStore:
    return GenerationLogStore(os.path.join(settings.log_dir, settings.generation_log_file))


def get_generator_factory() -> GeneratorFactory:
    log_store = get_log_store()

    def factory(mode: str) -> QuestionGenerator:
        return QuestionGenerator(
            get_model_client(mode.strip().lower()),
            log_store=log_store,
            source_preview_chars=settings.source_preview_chars,
            max_questions_per_type=settings.max_questions_per_type,
        )

    return factory


@asynccontextmanager
async def lifespan(app: FastAPI):
    os.makedirs(settings.upload_dir, exist_ok=True)
    logger.info("%s v%s ready (default provider %s/%s)", settings.app_name, settings.app_version,
                settings.default_mode, settings.default_model)
    yield
    performance_monitor.log_stats()


# --- App Initialization ---
app = FastAPI(
    title="QuizGen Question API",
    description="Generates multiple-choice comprehension questions from transcripts, documents and YouTube videos.",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    request_logger.log_request(request.url.path, request.method,
                               request.client.host if request.client else None)
    response = await call_next(request)
    request_logger.log_response(request.url.path, response.status_code, (time.time() - start_time) * 1000)
    return response


# --- Error mapping ---

@app.exception_handler(InvalidRequestError)
async def invalid_request_handler(request: Request, exc: InvalidRequestError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "kind": exc.kind})


@app.exception_handler(SourceExtractionError)
async def source_extraction_handler(request: Request, exc: SourceExtractionError):
    return JSONResponse(status_code=422, content={"detail": str(exc), "kind": exc.kind})


@app.exception_handler(ModelCallError)
async def model_call_handler(request: Request, exc: ModelCallError):
    status_code = 503 if isinstance(exc, ModelNotConfiguredError) else 502
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "kind": exc.kind})


def _run_batch(factory: GeneratorFactory, source_text: str, question_types: dict,
               mode: Optional[str], model: Optional[str],
               origin: Optional[OriginMetadata] = None) -> GenerateResponse:
    selector = ModelSelector(mode=(mode or settings.default_mode).strip().lower(),
                             model=model or settings.default_model)
    generator = factory(selector.mode)
    result = generator.generate_batch(source_text, question_types, selector, origin=origin)
    return GenerateResponse(
        questions=result.questions,
        total_elapsed_seconds=result.total_elapsed_seconds,
        mode=selector.mode,
        model=selector.model,
        batch_id=result.batch_id,
        questions_generated=result.questions_generated,
    )


# --- API Endpoints ---

@app.get("/health", status_code=200)
def health_check():
    """A simple endpoint to confirm the API is running correctly."""
    return {
        "status": "ok",
        "default_mode": settings.default_mode,
        "default_model": settings.default_model,
        "question_types": question_type_codes(),
    }


@app.get("/question-types")
def list_question_types():
    return [{"code": t.code, "label": t.label} for t in QUESTION_TEMPLATES.values()]


@app.get("/models/{mode}", response_model=List[str])
def list_models(mode: str):
    """Model names available from a provider (ollama, gemini, groq, llamacpp)."""
    return get_model_client(mode.strip().lower()).list_models()


# Generation endpoints are plain `def` so FastAPI runs them in its threadpool;
# each batch is sequential but separate requests proceed in parallel.

@app.post("/generate", response_model=GenerateResponse)
def generate_questions(request: GenerateRequest,
                       factory: GeneratorFactory = Depends(get_generator_factory)):
    """Generate questions from pasted text."""
    return _run_batch(factory, request.source_text, request.question_types, request.mode, request.model,
                      origin=OriginMetadata(source="text"))


@app.post("/transcribe-and-generate", response_model=GenerateResponse)
def generate_from_youtube(request: YouTubeGenerateRequest,
                          factory: GeneratorFactory = Depends(get_generator_factory)):
    """Fetch a YouTube transcript (optionally a time window of it) and generate questions."""
    if (request.start_time is not None and request.end_time is not None
            and request.end_time < request.start_time):
        raise InvalidRequestError("end_time must not be before start_time")

    video_id = extract_video_id(request.video_url)
    whisper_model = settings.whisper_model if settings.enable_whisper else None
    transcript = fetch_transcript(video_id, request.start_time, request.end_time, whisper_model)
    origin = OriginMetadata(source="youtube", video_id=video_id,
                            start_time=request.start_time, end_time=request.end_time)
    return _run_batch(factory, transcript, request.question_types, request.mode, request.model, origin)


@app.post("/upload-and-generate", response_model=GenerateResponse)
def generate_from_upload(
    file: UploadFile = File(...),
    question_types: str = Form('{"MCQ": 1}'),
    mode: Optional[str] = Form(None),
    model: Optional[str] = Form(None),
    factory: GeneratorFactory = Depends(get_generator_factory),
):
    """Upload a PDF/DOCX/PPTX/TXT document, extract its text and generate questions."""
    try:
        counts = json.loads(question_types)
    except ValueError:
        raise InvalidRequestError("question_types must be a JSON object such as {\"MCQ\": 2}")

    filename = os.path.basename(file.filename or "")
    file_ext = os.path.splitext(filename)[1].lower()
    if file_ext not in settings.allowed_extensions:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type. Allowed: {', '.join(settings.allowed_extensions)}"
        )

    max_size = settings.max_file_size_mb * 1024 * 1024
    os.makedirs(settings.upload_dir, exist_ok=True)
    file_path = os.path.join(settings.upload_dir, f"{uuid.uuid4().hex}{file_ext}")

    try:
        file_size = 0
        with open(file_path, "wb") as buffer:
            chunk = file.file.read(8192)
            while chunk:
                file_size += len(chunk)
                if file_size > max_size:
                    raise HTTPException(
                        status_code=400,
                        detail=f"File size exceeds {settings.max_file_size_mb}MB limit"
                    )
                buffer.write(chunk)
                chunk = file.file.read(8192)

        text = extract_text(file_path)
    finally:
        if os.path.exists(file_path):
            os.remove(file_path)

    logger.info("Extracted %d characters from upload %s", len(text), filename)
    return _run_batch(factory, text, counts, mode, model, OriginMetadata(source="upload", filename=filename))


# --- Generation log endpoints ---

@app.get("/logs", response_model=List[BatchLogRecord])
def get_logs(store: GenerationLogStore = Depends(get_log_store)):
    return store.list_all()


@app.get("/logs/{log_id}", response_model=BatchLogRecord)
def get_log(log_id: str, store: GenerationLogStore = Depends(get_log_store)):
    record = store.find_by_id(log_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Log not found")
    return record


@app.delete("/logs")
def clear_logs(store: GenerationLogStore = Depends(get_log_store)):
    store.clear()
    return {"message": "Logs cleared"}


@app.get("/metrics")
def get_metrics():
    """Timing statistics and request counters (for debugging/monitoring)."""
    return {
        "performance": performance_monitor.get_all_stats(),
        "requests": request_logger.get_stats(),
    }


if __name__ == "__main__":
    if settings.debug:
        print_settings()
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        timeout_keep_alive=300,  # 5 minutes keep-alive
        timeout_graceful_shutdown=30
    )

import os
import re
import time
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, ValidationError
from typing import Any, Dict, Optional, List
from dotenv import load_dotenv

load_dotenv()

from ai_cache.config import load_cache_config
from ai_cache.service import AICacheService
from ai_cache.stats import format_stats_report
from ai_cache.store import CacheType
from generation.generator import (
    GenerationError,
    current_season,
    generate_chat_reply,
    generate_crop_plan,
    generate_diagnosis,
    looks_like_plan,
)
from query_logging.query_logger import build_log_record, log_request_async

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# The cache service is built once at boot and closed on shutdown so its
# sweeper thread never outlives the process's request handling
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Server startup: building AI response cache...")
    service = AICacheService(load_cache_config())
    service.start()
    app.state.ai_cache = service
    yield
    service.close()
    logger.info("Server shutting down.")


app = FastAPI(title="Crop AI API", lifespan=lifespan)

CORS_ORIGINS = os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_ai_cache(request: Request) -> AICacheService:
    return request.app.state.ai_cache


# API Contract Models
class ChatMessage(BaseModel):
    role: str
    text: str

class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)
    history: List[ChatMessage] = Field(default_factory=list)
    crops_context: Optional[List[str]] = None
    state: Optional[str] = None

class PlanRequest(BaseModel):
    state: str
    district: str
    season: str
    sowing_month: Optional[str] = None
    soil_type: Optional[str] = None
    irrigation_availability: Optional[str] = None
    irrigation_method: Optional[str] = None
    land_size: Optional[float] = None
    land_unit: Optional[str] = "acre"

class DiagnoseRequest(BaseModel):
    description: str = Field(..., min_length=1, max_length=2000)
    crop: Optional[str] = None
    image_base64: Optional[str] = None

class AIResponse(BaseModel):
    response: str
    cached: bool
    latency_ms: int

class CacheConfigUpdate(BaseModel):
    max_size: Optional[int] = None
    default_ttl: Optional[float] = None
    chat_ttl: Optional[float] = None
    diagnosis_ttl: Optional[float] = None
    planning_ttl: Optional[float] = None
    enabled: Optional[bool] = None
    cleanup_interval: Optional[float] = None
    single_flight: Optional[bool] = None


_PLAN_FIELDS = (
    "state", "district", "season", "sowing_month", "soil_type",
    "irrigation_availability", "irrigation_method", "land_size", "land_unit",
)


def plan_query(plan: PlanRequest) -> str:
    """
    Stable text form of the planning parameters. Each parameter becomes a
    single field_value token so values like "2.5" survive normalization.
    """
    tokens = []
    for name in _PLAN_FIELDS:
        value = getattr(plan, name)
        if value is None or value == "":
            continue
        value = re.sub(r"\W+", "_", str(value).strip().lower())
        tokens.append(f"{name}_{value}")
    return "crop plan " + " ".join(tokens)


def _elapsed_ms(start: float) -> int:
    return int((time.time() - start) * 1000)


def _log(request_type: str, cached: bool, start: float, cache_key: Optional[str] = None):
    asyncio.create_task(log_request_async(build_log_record(request_type, cached, _elapsed_ms(start), cache_key)))


# Endpoints
@app.get("/")
def read_root(cache: AICacheService = Depends(get_ai_cache)):
    return {"message": "Crop AI API is running", "cache_size": len(cache.store)}


@app.post("/chat", response_model=AIResponse)
async def chat_endpoint(request: ChatRequest, cache: AICacheService = Depends(get_ai_cache)):
    start_time = time.time()
    context: Dict[str, Any] = {
        "season": current_season(),
        "state": request.state,
        "crop": request.crops_context[0] if request.crops_context else None,
    }

    async def supplier():
        return await generate_chat_reply(request.message, context, request.history)

    try:
        # only fresh conversations are shareable; follow-ups depend on history
        if request.history:
            text, cached, key = await supplier(), False, None
        else:
            result = await cache.with_cache(
                CacheType.CHAT, request.message, context, supplier,
                should_store=lambda reply: bool(reply and reply.strip()),
            )
            text, cached, key = result.payload, result.cached, result.key
    except GenerationError as e:
        raise HTTPException(status_code=502, detail=str(e))

    logger.info("Chat answered in %dms, season=%s, cached=%s", _elapsed_ms(start_time), context["season"], cached)
    _log(CacheType.CHAT.value, cached, start_time, key)
    return AIResponse(response=text, cached=cached, latency_ms=_elapsed_ms(start_time))


@app.post("/plan", response_model=AIResponse)
async def plan_endpoint(request: PlanRequest, cache: AICacheService = Depends(get_ai_cache)):
    start_time = time.time()
    query = plan_query(request)
    context = {"season": request.season, "state": request.state}
    params = request.model_dump(exclude_none=True)

    try:
        result = await cache.with_cache(
            CacheType.PLANNING, query, context,
            lambda: generate_crop_plan(params),
            should_store=looks_like_plan,
        )
    except GenerationError as e:
        raise HTTPException(status_code=502, detail=str(e))

    logger.info("Planning completed in %dms, cached=%s", _elapsed_ms(start_time), result.cached)
    _log(CacheType.PLANNING.value, result.cached, start_time, result.key)
    return AIResponse(response=result.payload, cached=result.cached, latency_ms=_elapsed_ms(start_time))


@app.post("/diagnose", response_model=AIResponse)
async def diagnose_endpoint(request: DiagnoseRequest, cache: AICacheService = Depends(get_ai_cache)):
    start_time = time.time()
    # goes through the cache so policy stays in one place; diagnosis is never stored
    try:
        result = await cache.with_cache(
            CacheType.DIAGNOSIS, request.description, {"crop": request.crop},
            lambda: generate_diagnosis(request.description, request.crop, request.image_base64),
        )
    except GenerationError as e:
        raise HTTPException(status_code=502, detail=str(e))

    _log(CacheType.DIAGNOSIS.value, result.cached, start_time, result.key)
    return AIResponse(response=result.payload, cached=result.cached, latency_ms=_elapsed_ms(start_time))


@app.get("/cache/stats")
def cache_stats_endpoint(cache: AICacheService = Depends(get_ai_cache)):
    return {"success": True, "data": format_stats_report(cache.get_stats(), cache.get_config())}


@app.delete("/cache/stats")
def cache_clear_endpoint(cache: AICacheService = Depends(get_ai_cache)):
    previous = cache.get_stats()
    cache.clear()
    return {
        "success": True,
        "message": f"Cleared {previous.size} cache entries",
        "previous_stats": {
            "size": previous.size,
            "hit_rate": f"{previous.hit_rate:.2f}%",
        },
    }


@app.patch("/cache/config")
def cache_config_endpoint(update: CacheConfigUpdate, cache: AICacheService = Depends(get_ai_cache)):
    changes = update.model_dump(exclude_none=True)
    try:
        config = cache.update_config(**changes)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    return {"success": True, "config": config.model_dump()}

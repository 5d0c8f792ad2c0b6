import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from intake_backend.config import CORS_ORIGINS, EXTRACTION_WORKERS, LOG_LEVEL
from intake_backend.conversation_api import router as conversation_router
from intake_backend.middleware import configure_security
from intake_backend.profile_api import router as profile_router
from intake_backend.scoring_api import router as scoring_router
from intake_backend.services.conversation_engine import question_context
from intake_backend.services.extraction_queue import ExtractionQueue
from intake_backend.services.llm_client import LLMClient
from intake_backend.services.llm_config import load_llm_config
from intake_backend.services.record_store import RecordStore, sql_store_scope
from intake_backend.services.turn_extractor import TurnExtractor

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def build_extractor(store: RecordStore) -> TurnExtractor:
    return TurnExtractor(LLMClient(await load_llm_config(store)))


@asynccontextmanager
async def lifespan(app: FastAPI):
    queue = ExtractionQueue(
        store_scope=sql_store_scope,
        extractor_factory=build_extractor,
        question_lookup=question_context,
        workers=EXTRACTION_WORKERS,
    )
    logger.info("[INFO] Starting extraction workers...")
    await queue.start()
    app.state.extraction_queue = queue
    yield
    logger.info("[INFO] Stopping extraction workers...")
    await queue.stop()


intake_app = FastAPI(title="Conversational Intake API", lifespan=lifespan)

intake_app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
configure_security(intake_app)

intake_app.include_router(conversation_router)
intake_app.include_router(profile_router)
intake_app.include_router(scoring_router)


@intake_app.get("/health")
async def health():
    queue = getattr(intake_app.state, "extraction_queue", None)
    return {
        "status": "ok",
        "extraction_workers": "running" if queue is not None and queue.running else "stopped",
    }

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from database import Base, engine, get_settings, session_scope
from core.completion_saga import CompletionSaga
from api import rounds, participants, scores, resources

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


def resume_pending_completions():
    """補跑上次中斷的完成清理（回合已完成但清理沒跑完）"""
    with session_scope() as db:
        resumed = CompletionSaga.resume_pending(db)
    if resumed:
        logger.info(f"Resumed completion cleanup for rounds: {resumed}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 建立資料表，並補跑中斷的清理
    Base.metadata.create_all(bind=engine)
    if settings.resume_sagas_on_startup:
        resume_pending_completions()
    yield


app = FastAPI(
    title="Flight Scoring API",
    description="Backend API for multi-tablet golf flight scoring",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure this properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(rounds.router)
app.include_router(participants.router)
app.include_router(scores.router)
app.include_router(resources.router)


@app.get("/")
def root():
    return {"message": "Flight Scoring API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

"""
資料庫與設定

- Settings：從環境變數 / .env 讀取（pydantic-settings）
- engine / SessionLocal / Base：全域唯一
- get_db：FastAPI dependency，每個 request 一個 session
- session_scope：request 以外（啟動時補跑 Saga）使用的 session
- transactional：單一 transaction 的業務操作 decorator
"""
from contextlib import contextmanager
from functools import lru_cache, wraps
import logging

from pydantic_settings import BaseSettings
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from core.exceptions import ScoringException

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./flight_scoring.db"
    # 建立回合時沒給 total_units 就用這個值
    default_total_units: int = 18
    max_total_units: int = 27
    resume_sagas_on_startup: bool = True
    log_level: str = "INFO"

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


def _engine_options(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        # FastAPI 的同步 endpoint 跑在 thread pool，連線會跨執行緒
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


settings = get_settings()

engine = create_engine(settings.database_url, **_engine_options(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """FastAPI dependency：request 結束時關閉 session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope():
    """在 request 之外取得 session（例如應用程式啟動時）"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _find_session(args, kwargs) -> Session:
    if args and isinstance(args[0], Session):
        return args[0]
    db = kwargs.get("db")
    if isinstance(db, Session):
        return db
    raise ValueError("@transactional needs a Session as the first argument or as db=")


def transactional(func):
    """
    把整個函式包成一個 transaction

    - 正常結束：commit
    - ScoringException（RoundClosed、InvalidUnit...）：rollback，warning log，原樣拋出
    - IntegrityError（並發寫入撞到唯一約束）：rollback，warning log，原樣拋出
    - 其他異常：rollback，error log（含 traceback），原樣拋出

    被包的函式只 add / flush，不自己 commit
    Barrier 與 Saga 需要分段 commit，不用這個 decorator
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        db = _find_session(args, kwargs)
        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except ScoringException as e:
            db.rollback()
            logger.warning(f"{func.__name__} rejected: {e}")
            raise
        except IntegrityError as e:
            # 唯一約束衝突：呼叫者可以重試，不算失敗
            db.rollback()
            logger.warning(f"{func.__name__} hit a constraint conflict: {e.orig}")
            raise
        except Exception as e:
            db.rollback()
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            raise

    return wrapper

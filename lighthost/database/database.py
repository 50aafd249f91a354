import os

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

# 데이터베이스 연결 문자열 (기본값은 SQLite, DATABASE_URL 환경 변수로 변경 가능)
SQLALCHEMY_DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///lighthost.db")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite는 연결마다 외래 키 제약을 켜야 ON DELETE CASCADE가 동작합니다.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str = SQLALCHEMY_DATABASE_URL, **kwargs):
    """
    주어진 URL로 SQLAlchemy 엔진을 생성합니다.
    SQLite는 여러 스레드가 동시에 쓰기를 시도하므로 busy timeout을 넉넉하게 둡니다.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False, "timeout": 30})
    new_engine = create_engine(url, **kwargs)
    if url.startswith("sqlite"):
        event.listen(new_engine, "connect", _enable_sqlite_foreign_keys)
    return new_engine


# SQLAlchemy 엔진 생성
engine = build_engine()

# autocommit=False, autoflush=False로 설정하여, 명시적으로 commit을 호출해야 DB에 반영됩니다.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# 모든 모델 클래스가 상속받을 Base 클래스
Base = declarative_base()

import logging

from sqlalchemy.orm import Session

from .database import engine as default_engine, Base
from .models import *

logger = logging.getLogger(__name__)


def initialize_db(engine=None, seed_tenant: str = "admin"):
    """
    DB와 테이블을 생성하고, 기본 테넌트를 삽입합니다.
    이미 테넌트가 존재하면 시드 작업을 건너뜁니다.
    """
    engine = engine or default_engine
    logger.info("Initializing database schema...")

    # 모든 테이블을 생성합니다. (이미 존재하면 생성하지 않음)
    Base.metadata.create_all(bind=engine)

    with Session(bind=engine) as db:
        try:
            if db.query(Tenant).first():
                logger.info("Default data already present, skipping seed.")
                return

            db.add(Tenant(username=seed_tenant))
            db.commit()
            logger.info("Database initialized with default tenant '%s'.", seed_tenant)
        except Exception:
            db.rollback()
            logger.exception("Database initialization failed.")
            raise


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    initialize_db()

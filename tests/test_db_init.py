# tests/test_db_init.py
from sqlalchemy import inspect
from sqlalchemy.orm import Session

from lighthost.database import models
from lighthost.database.database import build_engine
from lighthost.database.db_init import initialize_db

def test_initialize_db_creates_schema_and_seeds_once(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'init.db'}")

    initialize_db(engine)
    initialize_db(engine)

    assert {"tenants", "servers", "port_reservations"} <= set(inspect(engine).get_table_names())
    with Session(bind=engine) as db:
        assert [t.username for t in db.query(models.Tenant).all()] == ["admin"]
    engine.dispose()

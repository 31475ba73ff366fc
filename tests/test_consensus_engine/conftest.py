import pytest
from sqlalchemy.orm import sessionmaker

from database import build_engine, init_db


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()

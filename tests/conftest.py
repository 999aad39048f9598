import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import init_db, make_engine


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)

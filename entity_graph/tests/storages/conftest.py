import pytest
from _pytest.fixtures import SubRequest
from sqlalchemy.engine import Engine, create_engine
from sqlalchemy.pool import StaticPool


@pytest.fixture()
def engine(request: SubRequest) -> Engine:
    connection_url = request.config.getoption("--sqlalchemy-postgres-url")
    if not connection_url:
        pytest.skip("define --sqlalchemy-postgres-url cmd line option to run PostgreSQL tests")
    return create_engine(connection_url, paramstyle="format")


@pytest.fixture()
def sqlite_engine() -> Engine:
    return create_engine("sqlite://", poolclass=StaticPool)

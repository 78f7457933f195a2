import pytest

from gateway.core.store import IncidentStore


@pytest.fixture
def store(tmp_path):
    db = IncidentStore(tmp_path / "gateway.sqlite3")
    db.create_schema()
    return db

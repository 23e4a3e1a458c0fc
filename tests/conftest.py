import pytest

from txagg.database import TransactionStore


@pytest.fixture
def store(tmp_path):
    """A fresh on-disk store per test."""
    s = TransactionStore(tmp_path / "test.db")
    s.init_schema()
    return s

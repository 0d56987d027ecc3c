from collections.abc import Generator
from pathlib import Path

import pytest

from dbclient import DbClient
from tests.utils.sample import seed_sample


@pytest.fixture()
def sqlite_url(tmp_path: Path) -> Generator[str, None, None]:
    """File-backed sqlite database seeded with the sample table."""
    url = f"sqlite:///{tmp_path / 'dbclient_test.db'}"
    with DbClient(url) as db:
        seed_sample(db)
    yield url

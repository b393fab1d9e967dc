import logging

import pytest
import pytest_asyncio

from filemailer.credentials import CredentialResolver
from filemailer.persistence import Persistence


class ListHandler(logging.Handler):
    """Collect formatted records in memory."""

    def __init__(self):
        super().__init__()
        self.lines = []

    def emit(self, record):
        self.lines.append(record.getMessage())


@pytest_asyncio.fixture
async def persistence(tmp_path):
    p = Persistence(str(tmp_path / "filemailer.db"))
    await p.init_db()
    return p


@pytest.fixture
def credentials(persistence):
    return CredentialResolver(persistence)


@pytest.fixture
def list_handler():
    return ListHandler()

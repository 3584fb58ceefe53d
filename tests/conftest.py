import os
import tempfile

import pytest

# Point the store at a throwaway database before any timeflow module is imported
TEST_DB_PATH = tempfile.mkstemp(suffix='.db')[1]
os.environ['DB_PATH'] = TEST_DB_PATH
os.environ['EXTRACTOR_PROVIDER'] = 'rule_based'

from timeflow.core.db import get_db, init_db


@pytest.fixture(autouse=True)
def clean_store():
    """Every test starts with empty event and tag tables."""
    init_db()
    with get_db() as conn:
        conn.execute("DELETE FROM events")
        conn.execute("DELETE FROM tags")
        conn.commit()
    yield

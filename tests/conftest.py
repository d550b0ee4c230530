from __future__ import annotations

import os
import tempfile
from pathlib import Path

# The engine is built at import time, so the test database must be chosen first.
_TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="loop-tests-"))
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{_TEST_DB_DIR / 'loop_test.db'}"

import pytest  # noqa: E402

from loop_backend.config import settings  # noqa: E402
from loop_backend.db.bootstrap import drop_db, reset_db  # noqa: E402
from loop_backend.main import app  # noqa: E402
from loop_backend.modules.notify.mailer import get_mailer  # noqa: E402
from tests.support.fake_mailer import FakeMailer  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_db_and_defaults():
    settings.env = "test"
    settings.jwt_secret = "test-secret"
    settings.approval_token_ttl_days = 7
    settings.approval_token_enforce_expiry = True
    settings.version_submit_max_attempts = 3
    settings.import_max_bytes = 5 * 1024 * 1024
    settings.smtp_host = ""
    settings.smtp_user = ""
    settings.smtp_password = ""
    settings.mail_from_address = ""
    settings.admin_approval_email = ""
    settings.app_base_url = "http://testserver"
    app.dependency_overrides.clear()
    reset_db()
    yield
    app.dependency_overrides.clear()
    drop_db()


@pytest.fixture
def mailer() -> FakeMailer:
    fake = FakeMailer()
    app.dependency_overrides[get_mailer] = lambda: fake
    return fake

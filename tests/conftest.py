import os
import sys
import tempfile
from pathlib import Path

import pytest

# Ensure project root is importable in local and CI runs.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Force test config before importing app modules.
TEST_DB_PATH = Path(tempfile.gettempdir()) / "risksent_test.db"
if TEST_DB_PATH.exists():
    TEST_DB_PATH.unlink()

os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key"
os.environ["METATRADERAPI_API_KEY"] = ""
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["TELEGRAM_BOT_USERNAME"] = ""
os.environ["TELEGRAM_ALERT_CHANNEL_ID"] = ""
os.environ["RISK_DEDUPE_HOURS"] = "12"

import apps.api.app.main  # noqa: E402,F401  registers every model on Base
from apps.api.app.db.session import Base, SessionLocal, engine  # noqa: E402


@pytest.fixture()
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

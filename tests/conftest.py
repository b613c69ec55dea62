# tests/conftest.py
import os
import tempfile

import pytest

# must be set before the engine is first built
_TMP = tempfile.mkdtemp(prefix="checkout-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP, 'test.db')}")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("METRICS_ENABLED", "0")
os.environ.setdefault("AUTO_CREATE_SCHEMA", "1")
os.environ.setdefault("LOG_TO_STDOUT", "1")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "whsec_live")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET_TEST", "whsec_test")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET_STAGE", "whsec_stage")

from app import create_app  # noqa: E402
from models.base import Base, dispose_engine, init_engine_and_session  # noqa: E402


@pytest.fixture(scope="session")
def app():
    return create_app({"TESTING": True, "WTF_CSRF_ENABLED": False})


@pytest.fixture(scope="session")
def db_engine():
    engine, _Session = init_engine_and_session()
    yield engine
    dispose_engine()


@pytest.fixture(autouse=True)
def _db_clean(db_engine):
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)
    yield


@pytest.fixture()
def client(app):
    return app.test_client()

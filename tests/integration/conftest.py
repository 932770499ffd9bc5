import pytest
from fastapi.testclient import TestClient

from apps.api.app.main import app
from apps.api.app.core.security import get_password_hash
from apps.api.app.db.session import Base, SessionLocal, engine
from apps.api.app.models.user import User


@pytest.fixture()
def client():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        db.add(
            User(
                email="admin@test.com",
                hashed_password=get_password_hash("AdminPass123!"),
                role="admin",
            )
        )
        db.add(
            User(
                email="trader@test.com",
                hashed_password=get_password_hash("TraderPass123!"),
                role="trader",
            )
        )
        db.add(
            User(
                email="trader2@test.com",
                hashed_password=get_password_hash("Trader2Pass123!"),
                role="trader",
            )
        )
        db.commit()
    finally:
        db.close()

    with TestClient(app) as tc:
        yield tc

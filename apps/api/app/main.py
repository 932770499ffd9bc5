import apps.api.app.models.alert
import apps.api.app.models.alert_dedupe
import apps.api.app.models.audit_log
import apps.api.app.models.risk_rules
import apps.api.app.models.trading_account

from fastapi import FastAPI

from apps.api.app.api.accounts import router as accounts_router
from apps.api.app.api.alerts import router as alerts_router
from apps.api.app.api.ops import router as ops_router
from apps.api.app.api.risk import router as risk_router
from apps.api.app.api.users import router as users_router
from apps.api.app.core.logging import configure_logging
from apps.api.app.routes.auth import router as auth_router

from apps.api.app.db.session import engine, Base

configure_logging()

app = FastAPI(title="RiskSent API")

# users_router already imports the User model, so it is registered too.
Base.metadata.create_all(bind=engine)

app.include_router(auth_router)
app.include_router(users_router)
app.include_router(accounts_router)
app.include_router(alerts_router)
app.include_router(risk_router)
app.include_router(ops_router)


@app.get("/healthz")
def healthz():
    return {"status": "ok"}


@app.get("/")
def root():
    return {"app": "risksent", "docs": "/docs"}

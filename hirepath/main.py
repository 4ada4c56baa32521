from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hirepath.core.config import CORS_ORIGINS, LOG_LEVEL
from hirepath.core.logging_config import setup_logging
from hirepath.core.error_handlers import register_exception_handlers
from hirepath.api.routes import applications, billing, billing_webhook, employer_applicants, health


# ============================================
# ✅ LOGGING
# ============================================

setup_logging(LOG_LEVEL)


# ============================================
# ✅ FASTAPI APP INIT
# ============================================

app = FastAPI(title="HirePath API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Authorization", "Content-Type"],
)

register_exception_handlers(app)


# ============================================
# ✅ REGISTER ALL ROUTERS
# ============================================

app.include_router(billing.router)
app.include_router(billing_webhook.router)
app.include_router(employer_applicants.router)
app.include_router(applications.router)
app.include_router(health.router)


# ============================================
# ✅ HEALTH CHECK ROOT ENDPOINT
# ============================================

@app.get("/")
def root():
    return {"status": "HirePath API running"}

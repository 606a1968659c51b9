"""
FastAPI application for camp operations.

    uvicorn rest_api.main:app --port 8000
"""

from fastapi import FastAPI

from rest_api.core.cors import configure_cors
from rest_api.core.exception_handlers import register_exception_handlers
from rest_api.core.lifespan import lifespan
from rest_api.core.middlewares import register_middlewares
from rest_api.routers.auth import router as auth_router
from rest_api.routers.camps import router as camps_router
from rest_api.routers.certifications import router as certifications_router
from rest_api.routers.cit import router as cit_router
from rest_api.routers.health import router as health_router
from rest_api.routers.messages import router as messages_router
from rest_api.routers.payments import router as payments_router
from rest_api.routers.registrations import router as registrations_router
from rest_api.routers.reports import router as reports_router
from rest_api.routers.royalties import admin_router as royalties_admin_router
from rest_api.routers.royalties import licensee_router as royalties_licensee_router
from rest_api.routers.schedule_templates import router as schedule_templates_router
from rest_api.routers.users import router as users_router
from shared.config.settings import settings
from shared.security.rate_limit import limiter


app = FastAPI(
    title="Camp Operations REST API",
    description="Multi-tenant youth sports camp management API",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter

register_exception_handlers(app)
register_middlewares(app)
configure_cors(app)


for router in (
    health_router,
    auth_router,
    camps_router,
    schedule_templates_router,
    registrations_router,
    payments_router,
    royalties_admin_router,
    royalties_licensee_router,
    messages_router,
    users_router,
    certifications_router,
    cit_router,
    reports_router,
):
    app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rest_api.main:app",
        host="0.0.0.0",
        port=settings.rest_api_port,
        reload=True,
    )

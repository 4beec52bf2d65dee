from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from docman.api.review_notifications import router as review_notifications_router
from docman.api.reviews import router as reviews_router
from docman.config import settings
from docman.errors import register_error_handlers
from docman.logging import configure_logging

app = FastAPI(title=f"{settings.brand_name} Review API")

configure_logging()
register_error_handlers(app)


def _include_api_router(router, dependencies=None):
    app.include_router(router, dependencies=dependencies)
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(reviews_router)
_include_api_router(review_notifications_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)

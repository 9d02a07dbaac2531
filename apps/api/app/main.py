from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.logging import configure_logging
from app.routers import (
    admin_members,
    auth,
    families,
    health,
    invitations,
    lists,
    notifications,
    realtime,
)
from app.services.realtime import build_broker

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.broker = build_broker(settings)
    yield


app = FastAPI(
    title="Family Grocery Sharing API",
    version="1.0.0",
    description="API for family groups, role-scoped access, invitations and notifications.",
    # We proxy the API under a path prefix at the edge. Swagger needs a fixed openapi URL
    # that includes this prefix; we provide a custom /docs route below.
    docs_url=None,
    root_path=settings.root_path,
    lifespan=lifespan,
)


# Custom Swagger UI that points at the externally reachable OpenAPI URL.
@app.get("/docs", include_in_schema=False)
def swagger_ui():
    prefix = (settings.root_path or "").rstrip("/")
    openapi_url = f"{prefix}{app.openapi_url}"
    return get_swagger_ui_html(openapi_url=openapi_url, title=f"{app.title} - Docs")


# Bad input shape is a 400 across the API.
@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(families.router)
app.include_router(invitations.router)
app.include_router(lists.router)
app.include_router(notifications.router)
app.include_router(realtime.router)
app.include_router(admin_members.router)

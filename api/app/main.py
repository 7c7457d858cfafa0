from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import cron
from app.core.config import get_settings
from app.core.errors import ApiError
from catalog_sync.config import get_settings as get_sync_settings
from catalog_sync.db import build_engine, build_session_factory, create_tables

settings = get_settings()
app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup() -> None:
    engine = build_engine(get_sync_settings().database_url)
    await create_tables(engine)
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)


@app.on_event("shutdown")
async def shutdown() -> None:
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        await engine.dispose()


@app.exception_handler(RequestValidationError)
def request_validation_exception_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    error = ApiError(code="validation_error", message="Invalid request", details={"errors": exc.errors()})
    return JSONResponse(status_code=422, content=error.to_dict())


app.include_router(cron.router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}

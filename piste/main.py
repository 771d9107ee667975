import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from piste.database import init_db
from piste.errors import PisteError
from piste.routes import competitions, generation, phases, presets

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = "Piste Formula Engine API"

app = FastAPI(title=APP_NAME)

_cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    _cors_origins.extend(o.strip() for o in _extra.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PisteError)
async def piste_error_handler(request: Request, exc: PisteError):
    """Map engine error kinds to HTTP status codes."""
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.to_dict()})


# Include routers
app.include_router(competitions.router, prefix="/api", tags=["competitions"])
app.include_router(phases.router, prefix="/api", tags=["phases"])
app.include_router(generation.router, prefix="/api", tags=["generation"])
app.include_router(presets.router, prefix="/api", tags=["presets"])


@app.on_event("startup")
def on_startup():
    init_db()
    logger.info("%s started with %d route(s)", APP_NAME, len(app.routes))


@app.get("/api/health")
def health_check():
    return {"app_name": APP_NAME, "status": "healthy"}

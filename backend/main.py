import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from database import init_db
from planning_errors import PlanningError
from fiscal_planning_api import router as fiscal_planning_router
from kpi_api import router as kpi_router
from ogsm_api import router as ogsm_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="Strategic Planning API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PlanningError)
async def planning_error_handler(request: Request, exc: PlanningError):
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


app.include_router(fiscal_planning_router)
app.include_router(kpi_router)
app.include_router(ogsm_router)


@app.get("/")
def read_root():
    return {"message": "Strategic Planning API is running"}

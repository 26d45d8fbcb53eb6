from contextlib import asynccontextmanager

from fastapi import FastAPI

from almacen.app.api.v1.router import router as v1_router
from almacen.app.core.config import get_settings
from almacen.app.core.logging import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(get_settings().log_level)
    yield
    dashboards = getattr(app.state, "dashboards", None)
    if dashboards is not None:
        dashboards.close()


app = FastAPI(title="ALMACEN OBRA", version="0.1.0", lifespan=lifespan)
app.include_router(v1_router, prefix="/v1")

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import settings
from db.database import create_db_and_tables
from routers.inventory import router as inventory_router
from routers.pos import router as pos_router
from routers.recipes import router as recipes_router
from routers.recovery import router as recovery_router
from services.engine import InventoryEngine


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    await create_db_and_tables()
    app.state.inventory_engine = InventoryEngine.build()
    yield
    app.state.inventory_engine.shutdown()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Cafe POS Inventory API",
        description="Recipe-to-inventory deduction engine for the cafe POS",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(inventory_router, tags=["inventory"])
    app.include_router(pos_router, tags=["pos"])
    app.include_router(recovery_router, tags=["recovery"])
    app.include_router(recipes_router, tags=["recipes"])
    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from queryloop.api.routes import conversations, models
from queryloop.config import settings
from queryloop.services.orchestrator import QueryContext


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests may install their own context before startup.
    if getattr(app.state, "context", None) is None:
        app.state.context = QueryContext.create()
    yield
    await app.state.context.aclose()


app = FastAPI(
    title="QueryLoop",
    description="Search-augmented answers with asynchronous generation and completion polling",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(conversations.router)
app.include_router(models.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "queryloop"}

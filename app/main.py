from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import chat, chats
from app.config import settings
from app.services import logger as log_service
from app.services.chat_store import close_chat_store, get_chat_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    store = get_chat_store()
    ensure_schema = getattr(store, "ensure_schema", None)
    if ensure_schema is not None:
        await ensure_schema()
    log_service.log_event(
        event_type="startup",
        message="DeepSearch chat ready",
        chat_store=settings.chat_store_backend,
        search_provider=settings.search_provider,
    )
    yield
    # Shutdown
    await close_chat_store()


app = FastAPI(
    title="DeepSearch Chat",
    description="Chat assistant with web search and page scraping tools",
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
app.include_router(chat.router)
app.include_router(chats.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "deepsearch-chat"}

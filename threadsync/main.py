import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from threadsync.config import LOG_LEVEL
from threadsync.database.connection import close_mongo_connection, connect_to_mongo, get_database
from threadsync.routers.chat import router as chat_router
from threadsync.routers.conversations import router as conversations_router
from threadsync.routers.presence import router as presence_router


logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):

    await connect_to_mongo()
    try:
        yield
    finally:
        await close_mongo_connection()


app = FastAPI(title="threadsync", lifespan=lifespan)


app.include_router(chat_router)
app.include_router(conversations_router)
app.include_router(presence_router)


@app.get("/health")
async def health():
    """Liveness plus which chat collections already exist."""
    collections = set(await get_database().list_collection_names())
    return {
        "status": "ok",
        "collections": {
            name: name in collections
            for name in ("conversations", "conversations.messages", "messages", "users")
        },
    }

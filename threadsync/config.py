"""Central configuration, read once from the environment."""

import os

MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
MONGODB_DB = os.getenv("MONGODB_DB", "threadsync")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Presence
PRESENCE_TICK_SECONDS = float(os.getenv("PRESENCE_TICK_SECONDS", "15"))
PRESENCE_HEARTBEAT_SECONDS = float(os.getenv("PRESENCE_HEARTBEAT_SECONDS", "30"))

# Query sizes
MESSAGE_PAGE_LIMIT = int(os.getenv("MESSAGE_PAGE_LIMIT", "200"))
LEGACY_FALLBACK_LIMIT = int(os.getenv("LEGACY_FALLBACK_LIMIT", "120"))
CONVERSATION_PAGE_SIZE = int(os.getenv("CONVERSATION_PAGE_SIZE", "20"))
THREAD_SEARCH_LIMIT = int(os.getenv("THREAD_SEARCH_LIMIT", "50"))
PREVIEW_ENRICH_LIMIT = int(os.getenv("PREVIEW_ENRICH_LIMIT", "8"))

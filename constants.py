import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

ROOM_TTL_MINUTES = int(os.getenv("ROOM_TTL_MINUTES", 30))
DRAFT_LIMIT = int(os.getenv("DRAFT_LIMIT", 50))
MAX_ROOM_MEMBERS = int(os.getenv("MAX_ROOM_MEMBERS", 2))
# 0 cancels the room as soon as a member's socket drops
DISCONNECT_GRACE_SECONDS = float(os.getenv("DISCONNECT_GRACE_SECONDS", 0))

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
USER_COOKIE_NAME = "anonymousUserId"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))
RELOAD = os.getenv("RELOAD", "false").lower() == "true"

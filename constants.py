import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))
RELOAD = os.getenv("RELOAD", "false").lower() in ("1", "true", "yes")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

REDIS_ENABLED = os.getenv("REDIS_ENABLED", "true").lower() in ("1", "true", "yes")
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
# connect and read timeout of the Redis client, in seconds
REDIS_SOCKET_TIMEOUT_SECONDS = float(os.getenv("REDIS_SOCKET_TIMEOUT_SECONDS", 2))

# Call rooms
MAX_ROOM_PARTICIPANTS = int(os.getenv("MAX_ROOM_PARTICIPANTS", 2))
ROOM_TIMEOUT_SECONDS = float(os.getenv("ROOM_TIMEOUT_SECONDS", 60))

# Connection lifecycle
IDLE_TIMEOUT_SECONDS = float(os.getenv("IDLE_TIMEOUT_SECONDS", 30))
DISCONNECT_TIMEOUT_SECONDS = float(os.getenv("DISCONNECT_TIMEOUT_SECONDS", 120))
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", 5))
SEND_FLUSH_TIMEOUT_SECONDS = float(os.getenv("SEND_FLUSH_TIMEOUT_SECONDS", 2))

# "reject" keeps the existing connection, "replace" drops it in favour of the new one
DUPLICATE_CONNECTION_POLICY = os.getenv("DUPLICATE_CONNECTION_POLICY", "reject")

CALL_RECORD_TTL_SECONDS = int(os.getenv("CALL_RECORD_TTL_SECONDS", 86400))
CALL_HISTORY_LIMIT = int(os.getenv("CALL_HISTORY_LIMIT", 50))

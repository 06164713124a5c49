import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3001))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

# 0 disables the limit
DEFAULT_MAX_PARTICIPANTS = int(os.getenv("DEFAULT_MAX_PARTICIPANTS", 20))
OUTBOUND_QUEUE_SIZE = int(os.getenv("OUTBOUND_QUEUE_SIZE", 256))

SIGNALING_URL = os.getenv("SIGNALING_URL", f"ws://localhost:{PORT}/ws")
ICE_SERVERS = [
    url.strip()
    for url in os.getenv(
        "ICE_SERVERS",
        "stun:stun.l.google.com:19302,stun:stun1.l.google.com:19302,stun:stun2.l.google.com:19302",
    ).split(",")
    if url.strip()
]
BUFFER_EARLY_CANDIDATES = os.getenv("BUFFER_EARLY_CANDIDATES", "false").lower() in ("1", "true", "yes")

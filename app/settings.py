import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    API_KEY: str = os.getenv("API_KEY", "")

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # BridgeDB moat endpoint. fetch/check are appended to this.
    MOAT_BASE_URL: str = os.getenv("MOAT_BASE_URL", "https://bridges.torproject.org/moat")
    MOAT_REQUEST_TIMEOUT_SEC: float = float(os.getenv("MOAT_REQUEST_TIMEOUT_SEC", "30"))

    # Used when a status notification arrives without host/port
    SOCKS_PROXY_HOST_DEFAULT: str = os.getenv("SOCKS_PROXY_HOST_DEFAULT", "127.0.0.1")
    SOCKS_PROXY_PORT_DEFAULT: int = int(os.getenv("SOCKS_PROXY_PORT_DEFAULT", "9050"))

    # Redis list the tor controller daemon pops start/reload/status commands from
    NETWORK_COMMAND_KEY: str = os.getenv("NETWORK_COMMAND_KEY", "network:commands")
    PREFS_KEY_PREFIX: str = os.getenv("PREFS_KEY_PREFIX", "prefs:")

    ENABLE_PII_REDACTION: bool = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"

settings = Settings()

import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "cors-proxy")
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8080"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

PROXY_PATH = os.environ.get("PROXY_PATH", "/proxy")
PROXY_TIMEOUT = int(os.environ.get("PROXY_TIMEOUT", "300"))  # 5 minutes default

# Shared secret for the access gate; unset or empty disables gating
PROXY_TOKEN = os.getenv("PROXY_TOKEN", "") or None


def _parse_header_list(raw: str) -> list:
    return [h.strip().lower() for h in (raw or "").split(",") if h.strip()]


HEADERS_TO_DELETE = _parse_header_list(os.getenv("HEADERS_TO_DELETE", ""))
RESPONSE_HEADERS_TO_DELETE = _parse_header_list(
    os.getenv("RESPONSE_HEADERS_TO_DELETE", "")
)

FORWARD_QUERY_AS_HEADERS = (
    os.getenv("FORWARD_QUERY_AS_HEADERS", "false").lower() == "true"
)

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

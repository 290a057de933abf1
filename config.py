import os
from dotenv import load_dotenv

DEFAULT_MODEL = "gpt-3.5-turbo"
DEFAULT_PORT = 2999
DEFAULT_HOST = "0.0.0.0"
REQUEST_TIMEOUT_SECONDS = 30
MAX_RETRIES = 3


class ConfigError(Exception):
    """Raised when required settings are missing at startup."""


class RelayConfig:
    def __init__(
        self,
        api_url,
        api_key,
        model=DEFAULT_MODEL,
        port=DEFAULT_PORT,
        host=DEFAULT_HOST,
        timeout=REQUEST_TIMEOUT_SECONDS,
        max_retries=MAX_RETRIES,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.port = port
        self.host = host
        self.timeout = timeout
        self.max_retries = max_retries

    def __repr__(self):
        # Never print the key itself
        return (
            f"RelayConfig(api_url={self.api_url!r}, model={self.model!r}, "
            f"host={self.host!r}, port={self.port})"
        )


def _parse_port(raw_port):
    try:
        port = int(raw_port)
    except (TypeError, ValueError):
        return DEFAULT_PORT
    return port if port > 0 else DEFAULT_PORT


def load_config(environ=None):
    """
    Reads settings from the environment (after loading .env) and validates them.
    Raises ConfigError if API_URL or API_KEY is missing.
    """
    if environ is None:
        load_dotenv()  # Load variables from .env file
        environ = os.environ

    api_url = environ.get("API_URL")
    api_key = environ.get("API_KEY")

    missing = [
        name for name, value in (("API_URL", api_url), ("API_KEY", api_key)) if not value
    ]
    if missing:
        raise ConfigError(f"Missing {' or '.join(missing)} in .env")

    return RelayConfig(
        api_url=api_url,
        api_key=api_key,
        model=environ.get("MODEL") or DEFAULT_MODEL,
        port=_parse_port(environ.get("PORT")),
        host=environ.get("HOST") or DEFAULT_HOST,
    )

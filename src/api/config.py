"""API Configuration.

Static metadata for the HTTP surface. Runtime values (ports, secrets,
CORS origins) come from :mod:`src.settings`.
"""

from dataclasses import dataclass, field


@dataclass
class APIConfig:
    """Core API settings."""

    title: str = "Staff Notify"
    version: str = "1.0.0"
    description: str = "Real-time staff notification delivery"
    prefix: str = "/api/v1"
    docs_url: str = "/docs"
    cors_methods: list[str] = field(default_factory=lambda: ["GET", "POST", "OPTIONS"])
    cors_headers: list[str] = field(default_factory=lambda: ["*"])


DEFAULT_API_CONFIG = APIConfig()

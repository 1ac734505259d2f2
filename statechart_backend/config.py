"""
Backend settings, read from STATECHART_* environment variables.
"""
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_WORKSPACE = Path(os.path.expanduser("~/.statechart/workspace.json"))
DEFAULT_KROKI_URL = "https://kroki.io"


class Settings(BaseModel):
    """Runtime configuration for the API server."""
    workspace: Path = DEFAULT_WORKSPACE
    kroki_url: str = DEFAULT_KROKI_URL
    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)
    log_level: str = "INFO"
    render_timeout: float = Field(default=30.0, gt=0)
    autosave: bool = True

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Settings":
        """Build settings from the environment; unset variables keep their defaults."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in ("workspace", "kroki_url", "host", "port", "log_level", "render_timeout", "autosave"):
            raw = environ.get(f"STATECHART_{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        return cls.model_validate(values)


settings = Settings.from_env()

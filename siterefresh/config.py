from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path


DEFAULT_ENDPOINT = "https://api.openai.com/v1"
DEFAULT_SCHEDULE = "0 0 * * *"


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class Settings:
    api_key: str | None
    api_endpoint: str
    schedule: str
    home: Path
    status_file: Path
    run_log: Path
    banner_dir: Path
    content_dir: Path
    connect_timeout_s: float = 10.0
    read_timeout_s: float = 60.0
    max_attempts: int = 3

    @property
    def http_timeout(self) -> tuple[float, float]:
        return (self.connect_timeout_s, self.read_timeout_s)

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigError("Missing API credential. Set OPENAI_API_KEY in the environment or .env.")
        return self.api_key


def read_dotenv(path: Path) -> dict[str, str]:
    """Parse KEY=VALUE lines from a .env file (no dependency on python-dotenv)."""
    out: dict[str, str] = {}
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        return out
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        k, _, v = line.partition("=")
        k = k.strip()
        if k.startswith("export "):
            k = k[len("export ") :].strip()
        v = v.strip()
        if (v.startswith('"') and v.endswith('"')) or (v.startswith("'") and v.endswith("'")):
            v = v[1:-1]
        if k:
            out[k] = v
    return out


def _as_float(raw: str | None, default: float, *, name: str) -> float:
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def _as_int(raw: str | None, default: int, *, name: str) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ConfigError(f"{name} must be >= 1, got {raw!r}")
    return value


def load_settings(env: Mapping[str, str] | None = None, *, dotenv_path: Path | None = None) -> Settings:
    """Build :class:`Settings` from the process environment, falling back to ``<home>/.env``."""
    environ = dict(os.environ if env is None else env)
    home = Path(environ.get("SITEREFRESH_HOME") or os.getcwd()).expanduser()
    dotenv = read_dotenv(dotenv_path or home / ".env")

    def get(key: str) -> str | None:
        v = environ.get(key)
        if v is None or not v.strip():
            v = dotenv.get(key)
        return v.strip() if isinstance(v, str) and v.strip() else None

    def path_setting(key: str, default: Path) -> Path:
        v = get(key)
        return Path(v).expanduser() if v else default

    return Settings(
        api_key=get("OPENAI_API_KEY"),
        api_endpoint=(get("OPENAI_API_ENDPOINT") or DEFAULT_ENDPOINT).rstrip("/"),
        schedule=get("UPDATE_SCHEDULE") or DEFAULT_SCHEDULE,
        home=home,
        status_file=path_setting("SITEREFRESH_STATUS_FILE", home / "logs" / "scheduler-status.json"),
        run_log=path_setting("SITEREFRESH_RUN_LOG", home / "logs" / "scheduler-runs.jsonl"),
        banner_dir=path_setting("SITEREFRESH_BANNER_DIR", home / "random-banner"),
        content_dir=path_setting("SITEREFRESH_CONTENT_DIR", home / "content"),
        connect_timeout_s=_as_float(
            get("SITEREFRESH_HTTP_CONNECT_TIMEOUT_SECONDS"), 10.0, name="SITEREFRESH_HTTP_CONNECT_TIMEOUT_SECONDS"
        ),
        read_timeout_s=_as_float(
            get("SITEREFRESH_HTTP_READ_TIMEOUT_SECONDS"), 60.0, name="SITEREFRESH_HTTP_READ_TIMEOUT_SECONDS"
        ),
        max_attempts=_as_int(get("SITEREFRESH_MAX_ATTEMPTS"), 3, name="SITEREFRESH_MAX_ATTEMPTS"),
    )

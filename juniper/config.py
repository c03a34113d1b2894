from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from juniper.errors import ConfigError
from juniper.models import ConnectionSettings

DEFAULT_SERVER_URL = "http://localhost:8888"
DEFAULT_ERROR_MESSAGE = "Connecting failed. Please reload and try again."


def _default_storage_path() -> Path:
    return Path.home() / ".juniper" / "storage.db"


@dataclass(frozen=True)
class JuniperConfig:
    repository: str | None = None
    branch: str = "master"
    provisioning_service_url: str = "https://mybinder.org"
    static_connection_settings: ConnectionSettings | None = None
    kernel_type: str = "python3"
    use_provisioning: bool = True
    use_cache: bool = True
    cache_key: str = "juniper"
    cache_ttl_minutes: float = 60
    storage_path: Path = field(default_factory=_default_storage_path)
    isolate_executions: bool = True
    event_name: str = "juniper"
    loading_message: str = "Loading..."
    error_message: str = DEFAULT_ERROR_MESSAGE
    http_timeout_s: float = 600
    connect_timeout_s: float = 10
    sse_max_buffer_bytes: int = 16 * 1024 * 1024

    @property
    def server_settings(self) -> ConnectionSettings:
        """Static settings, falling back to a local Jupyter server."""
        if self.static_connection_settings is not None:
            return self.static_connection_settings
        return ConnectionSettings.from_http_url(DEFAULT_SERVER_URL)

    def validate(self) -> None:
        if self.use_provisioning and not (self.repository or "").strip():
            raise ConfigError("A repository (user/repo) is required when Binder is enabled")
        if self.cache_ttl_minutes <= 0:
            raise ConfigError(f"cache_ttl_minutes must be positive, got {self.cache_ttl_minutes}")
        if not self.provisioning_service_url.startswith(("http://", "https://")):
            raise ConfigError(
                f"Binder URL must include http(s): {self.provisioning_service_url!r}"
            )

    def with_overrides(self, **changes: object) -> JuniperConfig:
        return replace(self, **changes)


def _parse_bool(value: object, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return _parse_bool(raw, default)


def load_env(env_path: Path | None = None) -> None:
    """Load .env file into os.environ. Handles quoted values and spaces."""
    if env_path is None:
        env_path = Path.cwd() / ".env"

    if not env_path.exists():
        return

    for line in env_path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            key, val = line.split("=", 1)
            val = val.strip().strip('"').strip("'")
            os.environ[key.strip()] = val


def _static_settings_from_env() -> ConnectionSettings | None:
    base_url = (os.getenv("JUNIPER_SERVER_URL") or "").strip().rstrip("/")
    if not base_url:
        return None
    token = (os.getenv("JUNIPER_SERVER_TOKEN") or "").strip()
    ws_url = (os.getenv("JUNIPER_SERVER_WS_URL") or "").strip().rstrip("/")
    if ws_url:
        return ConnectionSettings(base_url=base_url, ws_url=ws_url, token=token)
    return ConnectionSettings.from_http_url(base_url, token)


def get_juniper_config() -> JuniperConfig:
    """Build a config from JUNIPER_* environment variables (call load_env() first)."""
    defaults = JuniperConfig()

    storage_path = (os.getenv("JUNIPER_STORAGE_PATH") or "").strip()
    repository = (os.getenv("JUNIPER_REPO") or "").strip() or None
    binder_url = (os.getenv("JUNIPER_BINDER_URL") or "").strip().rstrip("/")

    return JuniperConfig(
        repository=repository,
        branch=(os.getenv("JUNIPER_BRANCH") or "").strip() or defaults.branch,
        provisioning_service_url=binder_url or defaults.provisioning_service_url,
        static_connection_settings=_static_settings_from_env(),
        kernel_type=(os.getenv("JUNIPER_KERNEL_TYPE") or "").strip() or defaults.kernel_type,
        use_provisioning=_env_bool("JUNIPER_USE_BINDER", defaults.use_provisioning),
        use_cache=_env_bool("JUNIPER_USE_STORAGE", defaults.use_cache),
        cache_key=(os.getenv("JUNIPER_STORAGE_KEY") or "").strip() or defaults.cache_key,
        cache_ttl_minutes=float(
            os.getenv("JUNIPER_STORAGE_EXPIRE", str(defaults.cache_ttl_minutes))
        ),
        storage_path=Path(storage_path).expanduser() if storage_path else defaults.storage_path,
        isolate_executions=_env_bool("JUNIPER_ISOLATE_CELLS", defaults.isolate_executions),
        event_name=(os.getenv("JUNIPER_EVENT_NAME") or "").strip() or defaults.event_name,
        loading_message=os.getenv("JUNIPER_MSG_LOADING") or defaults.loading_message,
        error_message=os.getenv("JUNIPER_MSG_ERROR") or defaults.error_message,
        http_timeout_s=float(
            os.getenv("JUNIPER_HTTP_TIMEOUT_S", str(defaults.http_timeout_s))
        ),
        connect_timeout_s=float(
            os.getenv("JUNIPER_CONNECT_TIMEOUT_S", str(defaults.connect_timeout_s))
        ),
        sse_max_buffer_bytes=int(
            os.getenv("JUNIPER_SSE_MAX_BUFFER_BYTES", str(defaults.sse_max_buffer_bytes))
        ),
    )

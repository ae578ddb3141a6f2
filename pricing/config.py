import re

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple, Type

from pydantic import Field, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]

StorageType = Literal["file", "redis"]

RPC_URI_VARIABLE = re.compile(r"rpc_uri_for_(\d+)", re.IGNORECASE)


class RpcUriVariablesSource(PydanticBaseSettingsSource):
    """Folds ``RPC_URI_FOR_<chain_id>`` variables from .env and the environment into ``rpc_uris``."""

    def __init__(self, settings_cls: Type[BaseSettings], *env_sources: PydanticBaseSettingsSource):
        super().__init__(settings_cls)
        self._env_sources = env_sources

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> Dict[str, Any]:
        uris: Dict[str, str] = {}
        # later sources override earlier ones
        for source in self._env_sources:
            for key, value in getattr(source, "env_vars", {}).items():
                match = RPC_URI_VARIABLE.fullmatch(key)
                if match and value and value.strip():
                    uris[match.group(1)] = value.strip()
        return {"rpc_uris": uris} if uris else {}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8080, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Storage Settings
    storage_type: StorageType = Field(default="file", description="Price storage backend (file or redis)")
    cache_ttl_seconds: int = Field(
        default=0,
        ge=0,
        description="Price TTL in seconds; 0 keeps prices until overwritten",
    )
    backup_dir: Path = Field(
        default=Path("./data/prices"),
        description="Directory holding one JSON snapshot per chain for the file backend",
    )
    redis_url: str = Field(
        default="",
        description="Redis connection string used by the redis backend",
    )
    redis_key_prefix: str = Field(default="prices", description="Namespace for Redis price keys")

    # Discovery Settings
    discovery_timeout_seconds: float = Field(
        default=180.0,
        gt=0,
        description="Overall deadline for one chain's discovery pass",
    )
    discovery_batch_size: int = Field(
        default=50,
        ge=1,
        description="Calls per batch when enumerating on-chain registries",
    )
    discovery_max_batches: int = Field(
        default=40,
        ge=1,
        description="Hard cap on batches per on-chain enumeration",
    )
    discovery_sources: Dict[int, List[str]] = Field(
        default_factory=dict,
        description="Per-chain override of the ordered discovery source names",
    )

    rpc_uris: Dict[int, str] = Field(
        default_factory=dict,
        description="JSON-RPC endpoint per chain; RPC_URI_FOR_<chain_id> variables are merged in",
    )

    # Rate Limiting
    request_timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            RpcUriVariablesSource(settings_cls, dotenv_settings, env_settings),
            file_secret_settings,
        )

    @field_validator("storage_type", mode="before")
    @classmethod
    def _normalize_storage_type(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    def rpc_url_for(self, chain_id: int) -> Optional[str]:
        """RPC endpoint for a chain (``RPC_URIS`` or ``RPC_URI_FOR_<chain_id>``)."""
        value = self.rpc_uris.get(chain_id, "").strip()
        return value or None

    @property
    def has_redis_url(self) -> bool:
        return bool(self.redis_url)


# Global settings instance
settings = Settings()

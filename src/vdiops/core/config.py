# vdiops/src/vdiops/core/config.py

from pydantic_settings import BaseSettings
from pydantic import Field

from typing import List, Optional
import keyring
from keyring.errors import KeyringError

KEYRING_SERVICE = "vdiops"


class Settings(BaseSettings):
    log_level: str = Field(default="INFO")
    event_log_enabled: bool = Field(default=True)
    event_log_source: str = Field(default="VDIOps")

    # Windows Search
    search_service_name: str = Field(default="WSearch")
    search_data_root: str = Field(default="D:\\WindowsSearch\\")

    # ODFC containers
    odfc_root: str = Field(default="\\\\fileserver\\odfc$")
    odfc_mode: str = Field(default="user")
    odfc_size_mb: int = Field(default=30720)
    odfc_label: str = Field(default="ODFC")
    odfc_mount_root: str = Field(default="C:\\ODFC")
    odfc_diff_root: str = Field(default="C:\\ODFC\\Diff")
    outlook_cache_dir: Optional[str] = Field(default=None)
    diskpart_timeout: int = Field(default=300)
    volume_attempts: int = Field(default=5)
    volume_delay: float = Field(default=2.0)

    # Workplace join
    join_attempts: int = Field(default=5)
    join_delay: float = Field(default=30.0)

    # Azure AD / Graph
    tenant_id: Optional[str] = Field(default=None)
    client_id: Optional[str] = Field(default=None)
    client_secret: Optional[str] = Field(default=None)
    authority_url: str = Field(default="https://login.microsoftonline.com")
    graph_url: str = Field(default="https://graph.microsoft.com/v1.0")
    device_prefixes: List[str] = Field(default_factory=lambda: ["VDI-"])
    stale_days: int = Field(default=30)
    throttle_batch_size: int = Field(default=100)
    throttle_interval: float = Field(default=10.0)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "VDIOPS_",
        "extra": "ignore"
    }

    def get_secure_value(self, key: str, default=None):
        attr_name = key.lower()
        try:
            secure = keyring.get_password(KEYRING_SERVICE, key)
        except KeyringError:
            secure = None
        return secure or getattr(self, attr_name, default)

    def resolve_client_secret(self) -> Optional[str]:
        return self.get_secure_value("CLIENT_SECRET")

    def public_values(self) -> dict:
        """Settings safe to print, secrets removed."""
        values = self.model_dump()
        values.pop("client_secret", None)
        return values


def get_settings() -> Settings:
    return Settings()


# Instantiate settings
settings = Settings()

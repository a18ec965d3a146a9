from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict


class DispatchMode(str, Enum):
    SYNC = "sync"
    ASYNC = "async"


class ServiceConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str | None = None
    token: str | None = None


class AnonymizeConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ANONYMIZE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    token: str = ""
    services: dict[str, ServiceConfig] = {}
    notification_path: str = "/api/anonymize"
    identifier_selector: str = "email"
    anonymize_selector: str = "anonymize"
    dispatch_mode: DispatchMode = DispatchMode.SYNC
    timeout_seconds: float = 60.0
    worker_poll_seconds: float = 0.5

    def token_for(self, service_name: str) -> str:
        service = self.services.get(service_name)
        if service is not None and service.token:
            return service.token
        return self.token

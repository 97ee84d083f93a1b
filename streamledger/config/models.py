from pydantic import BaseModel, Field
from typing import Literal


class ConnectionConfig(BaseModel):
    port: str = "perforce:1666"
    user: str = ""
    client: str | None = None
    password_env: str = "P4PASSWD"
    auto_detect_workspace: bool = True


class StreamLedgerConfig(BaseModel):
    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    history_storage_path: str = Field(default="stream-history", min_length=1)
    last_used_stream: str | None = None
    log_level: Literal["debug", "info", "warn", "error"] = "info"
    log_format: Literal["rich", "plain"] = "rich"

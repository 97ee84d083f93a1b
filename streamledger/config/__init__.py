from .loader import load_config, save_last_used_stream
from .models import ConnectionConfig, StreamLedgerConfig

__all__ = [
    "ConnectionConfig",
    "StreamLedgerConfig",
    "load_config",
    "save_last_used_stream",
]

"""YAML config loading with env var expansion."""

import os
import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import StreamLedgerConfig

PROJECT_CONFIG = Path("./streamledger.yaml")
USER_CONFIG = Path.home() / ".streamledger" / "config.yaml"


def config_paths(cli_path: str | None = None) -> list[Path]:
    """Candidate config files, highest priority first."""
    paths = [Path(cli_path)] if cli_path else []
    return paths + [PROJECT_CONFIG, USER_CONFIG]


def load_config(cli_path: str | None = None) -> StreamLedgerConfig:
    """Load config with resolution order: CLI > project-local > user-global > defaults."""
    for path in config_paths(cli_path):
        if path.exists():
            try:
                with open(path) as f:
                    raw = yaml.safe_load(f)
                if raw is None:
                    continue
                raw = _expand_env_vars(raw)
                return StreamLedgerConfig(**raw)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
            except (TypeError, ValidationError) as e:
                raise ValueError(f"Invalid config in {path}: {e}") from e

    return StreamLedgerConfig()


_LAST_STREAM_RE = re.compile(r"^last_used_stream:.*$", re.MULTILINE)
_LAST_STREAM_COMMENTED_RE = re.compile(r"^#\s*last_used_stream:.*$", re.MULTILINE)


def save_last_used_stream(path: str | Path, stream: str) -> Path:
    """Record *stream* as ``last_used_stream`` in *path*.

    Only that one line is written; every other line, including comments
    and unexpanded ${VAR} references, stays as the user wrote it.
    """
    path = Path(path)
    line = yaml.safe_dump({"last_used_stream": stream}, default_flow_style=False).strip()
    text = path.read_text(encoding="utf-8") if path.exists() else ""
    for pattern in (_LAST_STREAM_RE, _LAST_STREAM_COMMENTED_RE):
        if pattern.search(text):
            text = pattern.sub(lambda _: line, text, count=1)
            break
    else:
        if text and not text.endswith("\n"):
            text += "\n"
        text += line + "\n"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def _expand_env_vars(obj: object) -> object:
    """Recursively expand ${VAR} references in strings."""
    if isinstance(obj, str):
        return re.sub(r"\$\{(\w+)\}", lambda m: os.environ.get(m.group(1), ""), obj)
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


# Default YAML template for `streamledger config init`
DEFAULT_CONFIG_TEMPLATE = """\
# streamledger.yaml

# Server connection
connection:
  port: "ssl:perforce:1666"
  user: "${P4USER}"
  # client: "my-workspace"      # omit to use the server default
  password_env: "P4PASSWD"     # password is read from this env var, never stored
  auto_detect_workspace: true  # switch to a workspace mapped to the root stream on publish

# Snapshot history
# Absolute depot paths (//depot/history) are used as-is;
# relative paths are nested under the root stream.
history_storage_path: "stream-history"

# last_used_stream: "//depot/main"

# Logging
log_level: "info"              # debug | info | warn | error
log_format: "rich"             # rich | plain
"""

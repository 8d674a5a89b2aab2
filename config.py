"""Runtime settings read from the environment (and an optional ``.env``)."""
from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    tenant_id: str | None
    client_id: str | None
    client_secret: str | None
    arm_endpoint: str
    debug: bool
    history_db: str
    plugin_dir: str

    @property
    def uses_service_principal(self) -> bool:
        return bool(self.client_id and self.client_secret)


def load_settings() -> Settings:
    return Settings(
        tenant_id=os.getenv("AZURE_TENANT_ID") or None,
        client_id=os.getenv("AZURE_CLIENT_ID") or None,
        client_secret=os.getenv("AZURE_CLIENT_SECRET") or None,
        arm_endpoint=os.getenv("AZQR_ARM_ENDPOINT", "https://management.azure.com").rstrip("/"),
        debug=_flag("AZQR_DEBUG"),
        history_db=os.getenv("AZQR_HISTORY_DB", "sqlite:///azqr_history.db"),
        plugin_dir=os.getenv("AZQR_PLUGIN_DIR", os.path.expanduser("~/.azqr/plugins")),
    )

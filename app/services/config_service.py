"""Environment-based configuration for the expense flow service."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass  # python-dotenv is optional outside development


class ConfigService:
    """Read settings from environment variables (``.env`` loaded when present).

    Values are read on access so tests can monkeypatch the environment.
    """

    DEFAULT_FLOW_TIMEOUT_MINUTES = 15
    DEFAULT_CATEGORY = "Alimentação"
    DEFAULT_LEDGER_API_URL = "https://gastometria.com.br/api/v1"
    DEFAULT_EVOLUTION_API_URL = "http://evolution:8080"
    DEFAULT_OPENAI_MODEL = "gpt-4o-mini"

    def __init__(self) -> None:
        self._logger = logging.getLogger(__name__)

    # -----------------
    # Flow state
    # -----------------
    def get_db_path(self) -> str:
        configured = os.getenv("EXPENSE_FLOW_DB_PATH")
        if configured:
            return configured
        data_dir = Path(__file__).resolve().parents[1] / "data"
        data_dir.mkdir(exist_ok=True)
        return str(data_dir / "expense_flow.db")

    def get_flow_timeout_minutes(self) -> int:
        return self._get_int("EXPENSE_FLOW_TIMEOUT_MINUTES", self.DEFAULT_FLOW_TIMEOUT_MINUTES)

    def get_default_category(self) -> str:
        return os.getenv("EXPENSE_DEFAULT_CATEGORY") or self.DEFAULT_CATEGORY

    # -----------------
    # Receipt extraction (OpenAI)
    # -----------------
    def get_openai_api_key(self) -> Optional[str]:
        return os.getenv("OPENAI_API_KEY") or None

    def get_openai_model(self) -> str:
        return os.getenv("OPENAI_RECEIPT_MODEL") or self.DEFAULT_OPENAI_MODEL

    def get_openai_image_max_dim(self) -> int:
        return self._get_int("OPENAI_IMAGE_MAX_DIM", 1600)

    def get_openai_timeouts(self) -> tuple[int, int]:
        return (
            self._get_int("OPENAI_CONNECT_TIMEOUT", 5),
            self._get_int("OPENAI_READ_TIMEOUT", 30),
        )

    # -----------------
    # Ledger and transport
    # -----------------
    def get_ledger_api_url(self) -> str:
        return (os.getenv("LEDGER_API_URL") or self.DEFAULT_LEDGER_API_URL).rstrip("/")

    def get_ledger_timeout(self) -> int:
        return self._get_int("LEDGER_TIMEOUT", 15)

    def get_evolution_api_url(self) -> str:
        return (os.getenv("EVOLUTION_API_URL") or self.DEFAULT_EVOLUTION_API_URL).rstrip("/")

    def get_evolution_api_key(self) -> Optional[str]:
        return os.getenv("EVOLUTION_API_KEY") or None

    # -----------------
    # Internal helpers
    # -----------------
    def _get_int(self, name: str, default: int) -> int:
        raw = os.getenv(name)
        if raw is None or raw.strip() == "":
            return default
        try:
            return int(raw)
        except ValueError:
            self._logger.warning(f"Invalid integer for {name}: {raw!r}, using default {default}")
            return default

"""Lightweight JSON logging utilities for expense flow instrumentation."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)

LOG_DIR = Path(__file__).resolve().parents[2] / "artifacts" / "logs"
LOG_FILE = LOG_DIR / "expense_flow.log"
SENSITIVE_KEYS = {"image_base64", "image_data", "access_token", "refresh_token", "password"}


def log_flow_event(event: Dict[str, Any]) -> None:
	"""Persist a structured flow event without leaking sensitive payloads."""

	payload = {
		"timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
	}
	for key, value in event.items():
		if key is None:
			continue
		normalized = str(key)
		if normalized.lower() in SENSITIVE_KEYS:
			continue
		payload[normalized] = value

	try:
		LOG_DIR.mkdir(parents=True, exist_ok=True)
		with LOG_FILE.open("a", encoding="utf-8") as handle:
			json.dump(payload, handle, ensure_ascii=False, default=str)
			handle.write("\n")
	except Exception as exc:  # pragma: no cover - logging must never break the flow
		logger.debug("Failed to write flow log: %s", exc, exc_info=True)


def log_transition_event(event: Dict[str, Any]) -> None:
	"""Record a step change (or termination) for one conversation."""

	payload = {"event_type": "transition"}
	payload.update(event)
	log_flow_event(payload)


def log_commit_event(event: Dict[str, Any]) -> None:
	"""Record the outcome of a ledger commit."""

	payload = {"event_type": "commit"}
	payload.update(event)
	log_flow_event(payload)

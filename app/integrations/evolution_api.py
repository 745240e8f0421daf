"""
Evolution API media client

Fetches the base64 payload of an inbound WhatsApp media message so the
receipt image can be handed to the extractor.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

import requests

logger = logging.getLogger(__name__)


@dataclass
class MediaPayload:
    base64: str
    mime_type: str = "image/jpeg"


class EvolutionMediaClient:
    """Download media referenced by a webhook message.

    ``media_ref`` is the webhook's message envelope: a dict holding the
    ``key`` and ``message`` entries of the inbound media message.
    """

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: int = 30):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def download(self, instance_key: str, media_ref: Dict[str, Any]) -> Optional[MediaPayload]:
        """Return the media payload, or None when it could not be fetched."""
        payload = {
            "message": {
                "key": media_ref.get("key"),
                "message": media_ref.get("message"),
            },
            "convertToMp4": False,
        }
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key

        logger.info(f"Downloading media for instance {instance_key}")
        try:
            response = requests.post(
                f"{self.base_url}/chat/getBase64FromMediaMessage/{instance_key}",
                headers=headers,
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Error downloading media: {e}")
            return None

        if not response.ok:
            logger.error(f"Evolution API error: {response.status_code} - {response.text}")
            return None

        result = response.json()
        if not result.get("base64"):
            logger.error("No base64 in Evolution API response")
            return None

        logger.info(f"Media downloaded, size: {len(result['base64'])} chars")
        return MediaPayload(base64=result["base64"], mime_type=result.get("mimetype") or "image/jpeg")

"""
OpenAI Vision receipt extractor
Sends a receipt photo to a vision chat model and returns its JSON answer
Compatible with requests-based API calls
"""

import base64
import binascii
import io
import json
import logging
import re
from typing import Any, Dict, Optional, Tuple

import requests
from PIL import Image

from app.utils.helpers.exceptions import ExtractionError

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
DATA_URL_PATTERN = re.compile(r"data:([\w.+-]+/[\w.+-]+);base64,")

PROMPT_TEMPLATE = """Analise esta imagem de cupom fiscal/nota fiscal e extraia TODOS os itens individuais.

INSTRUÇÕES:
1. Extraia CADA item separadamente com nome, quantidade e valor
2. O valor total dos itens DEVE corresponder ao total da nota
3. Se não conseguir ler algum item, estime com base no total

Responda APENAS em JSON válido:
{{
  "isReceipt": true/false,
  "establishment": "Nome do estabelecimento/loja",
  "date": "YYYY-MM-DD ou null se não visível",
  "suggestedCategory": "Categoria principal (Alimentação, Mercado, Farmácia, etc)",
  "items": [
    {{"name": "Nome do produto", "quantity": 1, "unitPrice": 0.00, "totalPrice": 0.00, "category": "Subcategoria opcional"}}
  ],
  "totalAmount": 0.00
}}

REGRAS:
- totalPrice = quantity * unitPrice
- Soma de todos totalPrice deve ser igual a totalAmount
- Se a legenda "{caption}" mencionar algo específico, use como contexto
- Se não conseguir identificar itens individuais, crie UM item genérico com o valor total"""


def parse_json_object(content: str) -> Dict[str, Any]:
    """Pull the first JSON object out of a model reply (which may carry prose or fences)."""
    match = JSON_OBJECT_PATTERN.search(content or "")
    if not match:
        raise ExtractionError("No JSON object in extraction response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Invalid JSON in extraction response: {exc}") from exc
    if not isinstance(data, dict):
        raise ExtractionError("Extraction response is not a JSON object")
    return data


def split_data_url(image_base64: str, mime_type: str) -> Tuple[str, str]:
    """Strip a "data:<mime>;base64," prefix, keeping its mime type."""
    match = DATA_URL_PATTERN.match(image_base64)
    if not match:
        return image_base64, mime_type
    return image_base64[match.end():], match.group(1)


class OpenAIReceiptExtractor:
    """OpenAI vision model wrapped as the receipt extraction collaborator"""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        max_image_dim: int = 1600,
        timeouts: Tuple[int, int] = (5, 30),
    ):
        self.api_key = api_key
        self.model = model
        self.max_image_dim = max_image_dim
        self.connect_timeout, self.read_timeout = timeouts

        if not self.api_key:
            logger.warning("OpenAI API key not found - receipt extraction unavailable")

    def is_available(self) -> bool:
        return bool(self.api_key)

    def extract(self, image_base64: str, mime_type: str, caption: str = "") -> Dict[str, Any]:
        """
        Extract receipt data from an image

        Args:
            image_base64: Base64-encoded image bytes
            mime_type: MIME type reported by the transport
            caption: Text sent along with the image (used as context)

        Returns:
            Raw dict with isReceipt, items, totalAmount, establishment, date, suggestedCategory

        Raises:
            ExtractionError: service unavailable, HTTP failure or unparseable reply
        """
        if not self.is_available():
            raise ExtractionError("OpenAI receipt extraction not configured")

        image_base64, mime_type = self._prepare_image_payload(image_base64, mime_type)

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}"
        }
        payload = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": PROMPT_TEMPLATE.format(caption=caption or "")},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{mime_type};base64,{image_base64}"}
                        }
                    ]
                }
            ],
            "temperature": 0,
            "max_tokens": 2000
        }

        try:
            response = requests.post(
                OPENAI_CHAT_URL,
                headers=headers,
                json=payload,
                timeout=(self.connect_timeout, self.read_timeout)
            )
        except requests.RequestException as e:
            logger.error(f"OpenAI receipt extraction request failed: {e}")
            raise ExtractionError(str(e)) from e

        if response.status_code != 200:
            logger.error(f"OpenAI API error: {response.status_code} - {response.text}")
            raise ExtractionError(f"OpenAI API error: {response.status_code}")

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ExtractionError(f"Unexpected OpenAI response shape: {e}") from e

        logger.info(f"OpenAI extraction returned {len(content or '')} characters")
        return parse_json_object(content)

    def _prepare_image_payload(self, image_base64: str, mime_type: str) -> Tuple[str, str]:
        """Downscale and compress the image to reduce upload size."""
        image_base64, mime_type = split_data_url(image_base64, mime_type)
        try:
            image_data = base64.b64decode(image_base64)
            image = Image.open(io.BytesIO(image_data))
            width, height = image.size
            max_dim = max(width, height)
            if max_dim <= self.max_image_dim:
                return image_base64, mime_type

            resize_ratio = self.max_image_dim / float(max_dim)
            new_size = (int(width * resize_ratio), int(height * resize_ratio))
            image = image.convert('RGB').resize(new_size, Image.LANCZOS)

            buffer = io.BytesIO()
            image.save(buffer, format='JPEG', quality=85, optimize=True)
            return base64.b64encode(buffer.getvalue()).decode('utf-8'), "image/jpeg"
        except (OSError, ValueError, binascii.Error) as e:
            logger.warning(f"Receipt image prep failed, sending original bytes: {e}")
            return image_base64, mime_type

"""
Vision Service — sends a receipt image to Claude Vision and returns the
decoded JSON record.

The prompt embeds the JSON schema of the Receipt model so the model's
output lines up with what the calculator and validator read. Schema
conformance itself is checked by the caller; this module only guarantees a
JSON object comes back.
"""
import base64
import binascii
import json
import logging
import os
import re
from functools import lru_cache
from typing import Optional

import anthropic

from models.schemas import Receipt, VisionModel

logger = logging.getLogger("receiptcheck.vision")

AVAILABLE_MODELS: list[VisionModel] = [
    VisionModel(id="claude-sonnet-4-5", name="Claude Sonnet 4.5", provider="anthropic"),
    VisionModel(id="claude-haiku-4-5", name="Claude Haiku 4.5", provider="anthropic"),
    VisionModel(id="claude-opus-4-1", name="Claude Opus 4.1", provider="anthropic"),
]
DEFAULT_MODEL = os.environ.get("VISION_MODEL", AVAILABLE_MODELS[0].id)
MAX_TOKENS = int(os.environ.get("VISION_MAX_TOKENS", "8192"))

# Media types the Messages API accepts for image blocks
SUPPORTED_MEDIA_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}

DATA_URL_RE = re.compile(r'^data:(image/[\w.+-]+);base64,(.+)$', re.DOTALL)


class VisionExtractionError(Exception):
    """Raised when Claude cannot produce a usable receipt record."""
    pass

class VisionNotConfiguredError(VisionExtractionError):
    """Raised when no API key is available."""
    pass

class InvalidImageError(ValueError):
    """Raised when the request does not carry a usable base64 image data URL."""
    pass

class UnknownModelError(ValueError):
    """Raised when the requested model id is not offered."""
    pass


def get_models() -> list[VisionModel]:
    return list(AVAILABLE_MODELS)


def resolve_model(model: Optional[str]) -> str:
    if not model:
        return DEFAULT_MODEL
    if model not in {m.id for m in AVAILABLE_MODELS}:
        raise UnknownModelError(f"Unknown model '{model}'")
    return model


def decode_data_url(image: str) -> tuple[str, str]:
    """
    Split a `data:image/<type>;base64,<data>` URL into (media_type, data).
    The payload is checked to be valid base64 but returned still encoded,
    which is what the Messages API wants.
    """
    m = DATA_URL_RE.match(image or "")
    if not m:
        raise InvalidImageError("Invalid image data")
    media_type, data = m.group(1).lower(), m.group(2).strip()
    if media_type == "image/jpg":
        media_type = "image/jpeg"
    if media_type not in SUPPORTED_MEDIA_TYPES:
        raise InvalidImageError(f"Unsupported image type: {media_type}")
    try:
        base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageError("Invalid image data: payload is not valid base64") from e
    return media_type, data


def _strip_titles(node):
    if isinstance(node, dict):
        return {k: _strip_titles(v) for k, v in node.items() if k not in ("title", "$schema")}
    if isinstance(node, list):
        return [_strip_titles(v) for v in node]
    return node


@lru_cache(maxsize=1)
def receipt_schema_json() -> str:
    """JSON schema of the Receipt model, rendered once per process."""
    return json.dumps(_strip_titles(Receipt.model_json_schema()), separators=(",", ":"))


def build_prompt() -> str:
    return f"""Parse this receipt into a JSON object.

Rules:
- Combine the printed date and time into an RFC3339 timestamp (e.g. 2024-03-01T19:42:00+07:00).
- Copy amounts exactly as printed; do not rescale or convert currencies.
- quantity × unit_price should equal total_price for every item; re-read the line if it does not.
- Put service charges in summary.service_charge and any other fees in summary.other_charges.
- Leave out fields that are not printed on the receipt.
- Output ONLY the JSON object. No prose, no markdown fences.

The JSON must conform to this JSON schema:
{receipt_schema_json()}"""


def decode_receipt_json(raw: str) -> dict:
    """Decode the model's text reply, tolerating markdown fences around it."""
    raw = raw.strip()
    raw = re.sub(r'^```[a-z]*\n?', '', raw)
    raw = re.sub(r'\n?```$', '', raw)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise VisionExtractionError(f"Model returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise VisionExtractionError("Model returned JSON that is not an object")
    return data


async def parse_receipt_image(image: str, model: Optional[str] = None) -> dict:
    """
    Extract a receipt record from a base64 image data URL.

    Raises InvalidImageError / UnknownModelError for bad requests and
    VisionExtractionError when Claude is unavailable or its reply is unusable.
    No retries are attempted.
    """
    media_type, data = decode_data_url(image)
    model_id = resolve_model(model)

    api_key = os.environ.get("ANTHROPIC_API_KEY", "")
    if not api_key:
        logger.warning("ANTHROPIC_API_KEY not set — cannot parse receipt images")
        raise VisionNotConfiguredError("ANTHROPIC_API_KEY not set")

    logger.info("Sending %d KB b64 (%s) to %s", len(data) // 1024, media_type, model_id)

    client = anthropic.AsyncAnthropic(api_key=api_key)
    try:
        message = await client.messages.create(
            model=model_id,
            max_tokens=MAX_TOKENS,
            messages=[{
                "role": "user",
                "content": [
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": media_type,
                            "data": data,
                        },
                    },
                    {"type": "text", "text": build_prompt()},
                ],
            }],
        )
        raw = message.content[0].text
    except Exception as e:
        logger.error("Claude Vision error: %s", e)
        raise VisionExtractionError(str(e)) from e

    return decode_receipt_json(raw)

"""Capability links carrying a backend configuration in the URL fragment."""

import base64
import binascii
import json
import logging
from typing import Optional
from urllib.parse import parse_qs, urldefrag

from pydantic import ValidationError as PydanticValidationError

from contraction_sync.schemas.backend import AdapterKind, BackendConfig

log = logging.getLogger(__name__)


def encode_config(config: BackendConfig) -> str:
    """Base64 JSON of the sheets settings (``scriptUrl``/``sheetName``)."""
    data = {"scriptUrl": config.script_url, "sheetName": config.sheet_name}
    return base64.urlsafe_b64encode(json.dumps(data).encode("utf-8")).decode("ascii")


def decode_config(encoded: str) -> Optional[BackendConfig]:
    """Inverse of ``encode_config``; also accepts standard base64. None if malformed."""
    text = encoded.strip().replace(" ", "+").replace("+", "-").replace("/", "_")
    text += "=" * (-len(text) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(text.encode("ascii")).decode("utf-8"))
        if not isinstance(data, dict):
            raise ValueError("config is not an object")
        return BackendConfig(
            kind=AdapterKind.POLLING,
            script_url=data.get("scriptUrl"),
            sheet_name=data.get("sheetName") or "Contractions",
        )
    except (binascii.Error, UnicodeError, ValueError, PydanticValidationError) as e:
        log.error(f"Failed to decode shared config: {e}")
        return None


def parse_fragment(url: str) -> Optional[BackendConfig]:
    """
    Extract a backend config from ``#config=<base64>`` or ``#userId=<id>``.
    ``url`` may be a full URL or just the fragment.
    """
    fragment = url[1:] if url.startswith("#") else urldefrag(url).fragment
    if not fragment:
        return None

    params = parse_qs(fragment, keep_blank_values=False)
    if params.get("config"):
        return decode_config(params["config"][0])
    if params.get("userId"):
        user_id = params["userId"][0].strip()
        if user_id:
            return BackendConfig(kind=AdapterKind.REALTIME, user_id=user_id)
    return None


def strip_fragment(url: str) -> str:
    """The address to show once the config has been taken out of it."""
    return urldefrag(url).url


def generate_share_url(base_url: str, config: BackendConfig) -> str:
    base = strip_fragment(base_url)
    if config.kind is AdapterKind.POLLING:
        return f"{base}#config={encode_config(config)}"
    if config.kind is AdapterKind.REALTIME:
        return f"{base}#userId={config.user_id}"
    raise ValueError("Nothing to share: no sync backend is configured")

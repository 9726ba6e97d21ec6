# app/services/evidence_service.py
"""
Evidence service — stores the image a sensor attached to a detection.

Sensors send either a direct image_url (kept as-is) or an inline
image_base64 (optionally a data: URI), which is decoded and written to
EVIDENCE_DIR/<plate>/<timestamp>.<ext>. Returns the stored path, or None.
"""

import base64
import binascii
import os
import re
from datetime import datetime
from typing import Optional

from app.utils.logger import get_logger

logger = get_logger(__name__)

_DATA_URI = re.compile(r"^data:image/(\w+);base64,", re.IGNORECASE)
_SAFE_NAME = re.compile(r"[^A-Z0-9_-]")


def store_evidence_image(image_base64: str, vehicle_number: str, evidence_dir: str) -> Optional[str]:
    """
    Decode and save a base64 image. Evidence is optional, so failures are
    logged and reported as None rather than failing the detection.
    """
    ext = "jpg"
    match = _DATA_URI.match(image_base64)
    if match:
        ext = "png" if match.group(1).lower() == "png" else "jpg"
        image_base64 = image_base64[match.end():]

    try:
        data = base64.b64decode(image_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.warning(f"[EVIDENCE] Undecodable image for {vehicle_number}: {e}")
        return None
    if not data:
        return None

    folder = os.path.join(evidence_dir, _SAFE_NAME.sub("_", vehicle_number) or "UNKNOWN")
    timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S_%f")
    filepath = os.path.join(folder, f"{timestamp}.{ext}")
    try:
        os.makedirs(folder, exist_ok=True)
        with open(filepath, "wb") as f:
            f.write(data)
    except OSError as e:
        logger.error(f"[EVIDENCE] Failed to save {filepath}: {e}")
        return None

    logger.info(f"[EVIDENCE] Saved {filepath} ({len(data)} bytes)")
    return filepath


def resolve_evidence(image_url: Optional[str], image_base64: Optional[str],
                     vehicle_number: str, evidence_dir: str) -> Optional[str]:
    """Direct URL wins; otherwise store the inline image if there is one."""
    if image_url:
        return image_url
    if image_base64:
        return store_evidence_image(image_base64, vehicle_number, evidence_dir)
    return None

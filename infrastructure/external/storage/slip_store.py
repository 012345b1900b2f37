"""Local file system store for uploaded transfer slips."""
from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from application.dtos.payments import StoredSlip
from core.logging_config import get_logger
from core.settings import payment_settings

logger = get_logger(__name__)

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


class LocalSlipStorage:
    """Writes slips under `<base>/<yyyy>/<mm>/<payment_id>-<sha1 prefix><ext>`.

    The returned reference is the path relative to the base directory; it is
    what ends up in the payment's external_ref.
    """

    def __init__(self, base_path: Optional[str] = None, public_base_url: Optional[str] = None):
        self.base_path = Path(base_path or payment_settings.slip.storage_dir).resolve()
        self.public_base_url = public_base_url
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _key(self, payment_id: str, data: bytes, content_type: str) -> str:
        now = datetime.now(timezone.utc)
        digest = hashlib.sha1(data).hexdigest()[:12]
        ext = _EXTENSIONS.get(content_type, ".bin")
        return f"{now:%Y}/{now:%m}/{payment_id}-{digest}{ext}"

    async def save(self, payment_id: str, data: bytes, *, content_type: str, filename: str) -> StoredSlip:
        key = self._key(payment_id, data, content_type)
        file_path = (self.base_path / key).resolve()
        if self.base_path not in file_path.parents:
            raise ValueError(f"Invalid slip path: {key}")

        await aiofiles.os.makedirs(file_path.parent, exist_ok=True)
        async with aiofiles.open(file_path, "wb") as f:
            await f.write(data)

        logger.info(
            "slip_stored",
            payment_id=payment_id,
            reference=key,
            size=len(data),
            original_filename=filename,
        )
        url = f"{self.public_base_url.rstrip('/')}/{key}" if self.public_base_url else None
        return StoredSlip(reference=key, url=url, size=len(data), content_type=content_type)

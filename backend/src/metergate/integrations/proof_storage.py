"""Local storage for uploaded payment proofs."""
from pathlib import Path
from uuid import UUID, uuid4

import structlog
from starlette.concurrency import run_in_threadpool

from metergate.config import settings
from metergate.exceptions import InvalidRequest

logger = structlog.get_logger(__name__)

ALLOWED_CONTENT_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}

_EXTENSION_ALIASES = {
    ".jpg": ".jpg",
    ".jpeg": ".jpg",
    ".png": ".png",
    ".webp": ".webp",
}


class PaymentProofStorage:
    """
    Stores proof images on local disk under a public URL prefix.

    Only files written by this class (URLs under ``url_prefix``) are ever
    deleted; externally hosted proof URLs set by admins are left alone.
    """

    def __init__(
        self,
        base_dir: str | Path | None = None,
        url_prefix: str | None = None,
        max_bytes: int | None = None,
    ):
        self.base_dir = Path(base_dir or settings.payment_proof_dir)
        self.url_prefix = (url_prefix or settings.payment_proof_url_prefix).rstrip("/")
        self.max_bytes = max_bytes or settings.payment_proof_max_bytes

    def extension_for(self, content_type: str | None, filename: str | None) -> str:
        """
        Resolve the stored file extension from MIME type, falling back to the filename.

        Raises:
            InvalidRequest: Not a JPEG, PNG or WebP image
        """
        if content_type in ALLOWED_CONTENT_TYPES:
            return ALLOWED_CONTENT_TYPES[content_type]
        suffix = Path(filename or "").suffix.lower()
        if suffix in _EXTENSION_ALIASES:
            return _EXTENSION_ALIASES[suffix]
        raise InvalidRequest("Payment proof must be a JPG, PNG or WEBP image.")

    def validate(self, content: bytes, content_type: str | None, filename: str | None) -> str:
        """Check size and type; returns the extension to store under."""
        if not content:
            raise InvalidRequest("Payment proof file is empty.")
        if len(content) > self.max_bytes:
            raise InvalidRequest(f"Payment proof exceeds {self.max_bytes // (1024 * 1024)} MB.")
        return self.extension_for(content_type, filename)

    def is_managed(self, url: str | None) -> bool:
        return bool(url) and url.startswith(self.url_prefix + "/")

    async def save(
        self, invoice_id: UUID, content: bytes, content_type: str | None, filename: str | None
    ) -> str:
        """
        Validate and persist a proof file.

        Returns:
            Public URL of the stored file
        """
        extension = self.validate(content, content_type, filename)
        name = f"{invoice_id}-{uuid4().hex[:12]}{extension}"
        path = self.base_dir / name

        await run_in_threadpool(self.base_dir.mkdir, parents=True, exist_ok=True)
        await run_in_threadpool(path.write_bytes, content)

        url = f"{self.url_prefix}/{name}"
        logger.info("payment_proof_stored", invoice_id=str(invoice_id), url=url, size=len(content))
        return url

    async def delete(self, url: str | None) -> None:
        """Remove a managed proof file; unmanaged URLs are ignored."""
        if not self.is_managed(url):
            return

        path = self.base_dir / Path(url[len(self.url_prefix) + 1:]).name
        try:
            await run_in_threadpool(path.unlink, missing_ok=True)
        except OSError as exc:
            logger.warning("payment_proof_delete_failed", url=url, error=str(exc))

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from certify.core.errors import (
    AlreadyRevokedError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from certify.core.metrics import REVOCATIONS
from certify.models.certificate import CredentialRecord, normalize_address
from certify.repos.certificate_repo import CertificateRepo
from certify.services.anchoring import request_anchor
from certify.services.lifecycle import utcnow
from certify.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)


class RevocationService:
    """valid -> revoked, once, by the issuer only.

    The store does the compare-and-set; this layer validates input, counts
    results and fires the best-effort anchor.  A second revocation is
    rejected with AlreadyRevokedError rather than treated as a no-op.
    """

    def __init__(self, repo: CertificateRepo, queue: TaskQueue | None = None) -> None:
        self._repo = repo
        self._queue = queue

    async def revoke(
        self,
        certificate_id: UUID,
        reason: str,
        caller_address: str,
        *,
        now: datetime | None = None,
    ) -> CredentialRecord:
        reason = (reason or "").strip()
        if not reason:
            REVOCATIONS.labels(result="invalid").inc()
            logger.warning("Rejected revocation with empty reason id=%s", certificate_id)
            raise ValidationError("revocation reason must be non-empty")
        caller = normalize_address(caller_address)

        try:
            updated = await self._repo.update_revocation(
                certificate_id, reason, caller, now or utcnow()
            )
        except NotFoundError:
            REVOCATIONS.labels(result="not_found").inc()
            raise
        except UnauthorizedError:
            REVOCATIONS.labels(result="unauthorized").inc()
            logger.warning(
                "Rejected revocation by non-issuer id=%s caller=%s",
                certificate_id,
                caller,
            )
            raise
        except AlreadyRevokedError:
            REVOCATIONS.labels(result="already_revoked").inc()
            logger.warning("Rejected second revocation id=%s", certificate_id)
            raise

        REVOCATIONS.labels(result="revoked").inc()
        logger.info(
            "Revoked certificate id=%s by issuer=%s",
            updated.id,
            caller,
            extra={"certificate_id": str(updated.id), "issuer": caller},
        )
        if self._queue is not None:
            await request_anchor(self._queue, updated, "revoke")
        return updated

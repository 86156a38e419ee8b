"""
Terminal job status reporting.
"""

import logging
import traceback
from typing import Any, Dict, Optional

import httpx

from .config import NotifyConfig
from .errors import NotifyError

logger = logging.getLogger(__name__)

STATUS_DONE = "done"
STATUS_FAILED = "failed"


def build_payload(job_id: str, error: Optional[BaseException] = None) -> Dict[str, Any]:
    """Status body for a finished job: ``done``, or ``failed`` with error details."""
    if error is None:
        return {"jobId": job_id, "status": STATUS_DONE}

    stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    return {
        "jobId": job_id,
        "status": STATUS_FAILED,
        "errorMessage": str(error) or type(error).__name__,
        "errorDetails": {
            "name": type(error).__name__,
            "stack": stack,
            "code": getattr(error, "code", None),
        },
    }


class StatusNotifier:
    """
    Posts one terminal status per job to the status endpoint.

    Best-effort: failures are logged and never retried, and never change the
    job's own outcome.
    """

    def __init__(self, config: Optional[NotifyConfig] = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or NotifyConfig()
        self._client = client

    async def _post(self, payload: Dict[str, Any]) -> None:
        url = self.config.status_url
        if self._client is not None:
            response = await self._client.post(url, json=payload, timeout=self.config.timeout)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(url, json=payload, timeout=self.config.timeout)
        if not response.is_success:
            raise NotifyError(f"Status endpoint returned HTTP {response.status_code}", code="notify_rejected")

    async def notify(self, job_id: str, error: Optional[BaseException] = None) -> bool:
        """
        Report the outcome of ``job_id``.

        Returns:
            True if the endpoint accepted the notification.
        """
        if not self.config.status_url:
            logger.info(f"[Notify] No status URL configured, skipping notification for job {job_id}")
            return False

        payload = build_payload(job_id, error)
        try:
            await self._post(payload)
            logger.info(f"[Notify] Job {job_id} reported as {payload['status']}")
            return True
        except (httpx.HTTPError, NotifyError) as e:
            logger.error(f"[Notify] Failed to report job {job_id} as {payload['status']}: {e}")
            return False
        except Exception as e:
            # Bad URL, closed client and the like: the job's outcome stands
            logger.exception(f"[Notify] Could not report job {job_id} as {payload['status']}: {e}")
            return False

    async def notify_success(self, job_id: str) -> bool:
        return await self.notify(job_id)

    async def notify_failure(self, job_id: str, error: BaseException) -> bool:
        return await self.notify(job_id, error)

"""
Client for the external eligibility service.

When ELIGIBILITY_SERVICE_URL is not configured every candidate is eligible and
no extra candidates are resolved from a context.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings

logger = logging.getLogger(__name__)


class EligibilityService:
    def __init__(self, base_url: Optional[str] = None, timeout_seconds: Optional[float] = None):
        self.base_url = base_url if base_url is not None else settings.ELIGIBILITY_SERVICE_URL
        self.timeout_seconds = timeout_seconds or settings.COLLABORATOR_TIMEOUT_SECONDS

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def is_eligible(self, candidate_id: str, test_id: str) -> bool:
        """
        Look up one candidate's eligibility record

        Raises:
            httpx.HTTPError: the service could not be reached or answered with an error
        """
        if not self.enabled:
            return True

        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout_seconds) as client:
            response = await client.get(
                f"/candidates/{candidate_id}/eligibility", params={"test_id": test_id}
            )
            if response.status_code == 404:
                return False
            response.raise_for_status()
            return bool(response.json().get("eligible", False))

    async def candidates_for(self, context: Dict[str, Any]) -> List[str]:
        """Resolve a drive/test context into candidate ids"""
        if not self.enabled:
            return []

        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout_seconds) as client:
            response = await client.post("/candidates/eligible", json=context)
            response.raise_for_status()
            candidate_ids = response.json().get("candidate_ids", [])

        logger.info(f"Eligibility context resolved to {len(candidate_ids)} candidates")
        return [str(candidate_id) for candidate_id in candidate_ids]

"""
Proctoring monitor: ingests client-reported integrity events and decides,
server-side, when an attempt is flagged or terminated.
"""

import logging
from typing import Any, Dict, Optional

from ..config import settings
from ..errors import ConflictError, DeadlineExceededError, ValidationError
from ..models.enums import FinalizeTrigger, ProctoringEventType, SubmissionStatus
from ..utils import utcnow
from .submission_service import MAX_CAS_RETRIES, SubmissionService

logger = logging.getLogger(__name__)

FLAG_REASON = "Excessive tab switching"


class ProctoringMonitor:
    def __init__(
        self,
        submissions: SubmissionService,
        flag_threshold: Optional[int] = None,
        terminate_threshold: Optional[int] = None,
    ):
        self.submissions = submissions
        self.flag_threshold = flag_threshold or settings.PROCTORING_FLAG_THRESHOLD
        self.terminate_threshold = (
            terminate_threshold or settings.PROCTORING_TERMINATE_THRESHOLD
        )

    async def record_event(
        self,
        submission_id: str,
        candidate_id: str,
        event_type: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Record one proctoring event

        Every event is logged on the attempt and counted. Tab switches also
        raise the warning count; crossing the flag threshold flags the attempt
        and crossing the termination threshold (when the test prevents tab
        switching) finalizes it with trigger ``proctoring``.

        Args:
            submission_id: Attempt the event belongs to
            candidate_id: Reporting candidate (must own the attempt)
            event_type: One of ProctoringEventType
            details: Optional client metadata stored with the event

        Returns:
            Counters, flag state and whether the attempt was terminated

        Raises:
            ValidationError: unknown event type
            ConflictError: attempt is not in progress
        """
        try:
            event = ProctoringEventType(event_type)
        except ValueError:
            raise ValidationError(f"Unknown proctoring event: {event_type}")

        submission = await self.submissions.load_owned(submission_id, candidate_id)
        test = await self.submissions.load_test(submission.test_id)

        for _ in range(MAX_CAS_RETRIES):
            now = utcnow()
            if submission.status != SubmissionStatus.IN_PROGRESS:
                raise ConflictError(
                    "Proctoring events are only accepted while the attempt is in progress"
                )
            if submission.is_past_deadline(test.duration_minutes, now):
                await self.submissions.force_timeout(submission, now)
                raise DeadlineExceededError("Time is up; the attempt has been submitted")

            state = submission.proctoring.model_copy(deep=True)
            state.events.append(
                {"type": event.value, "timestamp": now.isoformat(), **(details or {})}
            )
            state.event_counts[event.value] = state.event_counts.get(event.value, 0) + 1

            if event == ProctoringEventType.TAB_SWITCH:
                state.tab_switch_count += 1
                state.warnings_issued += 1
                if state.tab_switch_count >= self.flag_threshold and not state.flagged:
                    state.flagged = True
                    state.flag_reason = FLAG_REASON
                    logger.warning(
                        f"Submission {submission_id} flagged after "
                        f"{state.tab_switch_count} tab switches"
                    )

            if await submission.compare_and_set(
                SubmissionStatus.IN_PROGRESS, proctoring=state
            ):
                break
            submission = await self.submissions.load(submission_id)
        else:
            raise ConflictError("Submission was modified concurrently, please retry")

        terminated = False
        if (
            event == ProctoringEventType.TAB_SWITCH
            and test.settings.prevent_tab_switch
            and state.tab_switch_count >= self.terminate_threshold
        ):
            try:
                await self.submissions.finalize(submission_id, FinalizeTrigger.PROCTORING)
                terminated = True
                logger.warning(
                    f"Submission {submission_id} terminated after "
                    f"{state.tab_switch_count} tab switches"
                )
            except ConflictError:
                logger.info(f"Submission {submission_id} was finalized before termination")

        warnings_remaining = None
        if test.settings.prevent_tab_switch:
            warnings_remaining = max(0, self.terminate_threshold - state.tab_switch_count)

        return {
            "event_type": event.value,
            "tab_switch_count": state.tab_switch_count,
            "warnings_issued": state.warnings_issued,
            "warnings_remaining": warnings_remaining,
            "flagged": state.flagged,
            "flag_reason": state.flag_reason,
            "terminated": terminated,
        }

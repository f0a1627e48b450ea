"""
WATCHTOWER - Workflow Poller
============================

Tracks findings that wait on the external workflow and folds the result into
the store exactly once.

Each tracked work order is an explicit PollTask record owned by the
PollingSupervisor. Callers never touch task state directly: they hand the
supervisor their current candidate findings (``sync``) or ask it to tear a
session down (``stop``), and the supervisor decides to start, keep, switch or
abandon a loop.

State machine per task:

    idle -> polling -> completed
                    -> abandoned

- only one task may be polling a given workorderid at a time
- polls for one task never overlap; the next one waits ``interval`` after the
  previous outcome
- provider errors count as "still pending" and there is no retry budget
- completion is a compare-and-set on the finding; losing the race to another
  writer abandons the task without notifying
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Optional
from uuid import UUID

import structlog
from sqlalchemy import select, update

from watchtower.config import get_settings
from watchtower.db.database import async_session
from watchtower.db.models import Finding, VerificationStatus, WORKFLOW_AGENT_TYPE
from watchtower.errors import SubjectValidationError
from watchtower.monitoring.metrics import record_poll, record_transition, update_active_poll_tasks
from watchtower.services.notifications import (
    CompletionCallback,
    CompletionEvent,
    EmailCompletionSink,
    compose_completion_message,
    deliver_completion,
)
from watchtower.services.workflow import (
    PollResult,
    WorkflowClient,
    is_pending_payload,
    is_terminal_payload,
)

logger = structlog.get_logger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class PollState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class CandidateFinding:
    """The parts of a finding the poller looks at."""
    id: UUID
    agent_type: str
    data: dict
    created_at: datetime = _EPOCH

    @classmethod
    def coerce(cls, finding: Any) -> "CandidateFinding":
        """
        Accept a CandidateFinding, an ORM row or a mapping.

        Raises:
            SubjectValidationError: the id or created_at cannot be read
        """
        if isinstance(finding, CandidateFinding):
            return finding
        if isinstance(finding, Mapping):
            get = finding.get
        else:
            def get(name, default=None):
                return getattr(finding, name, default)

        created_at = get("created_at") or _EPOCH
        if isinstance(created_at, str):
            try:
                created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
            except ValueError:
                raise SubjectValidationError("created_at", created_at, "not an ISO-8601 timestamp")
        if not isinstance(created_at, datetime):
            raise SubjectValidationError("created_at", str(created_at), "not a timestamp")
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)

        finding_id = get("id")
        if not isinstance(finding_id, UUID):
            try:
                finding_id = UUID(str(finding_id))
            except ValueError:
                raise SubjectValidationError("id", str(finding_id), "not a UUID")
        return cls(
            id=finding_id,
            agent_type=get("agent_type") or "",
            data=get("data") or {},
            created_at=created_at,
        )

    @property
    def workorderid(self) -> Optional[str]:
        value = self.data.get("workorderid") if isinstance(self.data, dict) else None
        return str(value) if value else None


def select_workflow_finding(findings: Iterable[Any]) -> Optional[CandidateFinding]:
    """Most recent workflow finding; reruns can leave several behind. Malformed entries are skipped."""
    candidates = []
    for finding in findings:
        try:
            candidate = CandidateFinding.coerce(finding)
        except SubjectValidationError as e:
            logger.warning("candidate_finding_invalid", **e.to_dict())
            continue
        if candidate.agent_type == WORKFLOW_AGENT_TYPE:
            candidates.append(candidate)
    if not candidates:
        return None
    return max(candidates, key=lambda c: c.created_at)


@dataclass(eq=False)
class PollTask:
    """One work order being tracked for one investigation session."""
    investigation_id: UUID
    finding_id: UUID
    workorderid: str
    on_complete: Optional[CompletionCallback] = None
    state: PollState = PollState.IDLE
    attempts: int = 0
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    handle: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self.state == PollState.POLLING

    def to_dict(self) -> dict:
        return {
            "investigation_id": self.investigation_id,
            "state": self.state.value,
            "workorderid": self.workorderid,
            "attempts": self.attempts,
        }


class PollingSupervisor:
    """
    Owns every PollTask.

    ``sync`` is synchronous on purpose: the polling guard is checked and set
    without yielding to the event loop, so concurrent callers cannot both
    start a loop for the same workorderid.

    ``on_complete`` is the completion callback for sessions whose caller does
    not pass one; the process-wide supervisor emails the investigation owner.
    """

    def __init__(
        self,
        client: Optional[WorkflowClient] = None,
        session_factory=async_session,
        interval: Optional[float] = None,
        completion_confidence: Optional[float] = None,
        on_complete: Optional[CompletionCallback] = None,
    ):
        settings = get_settings()
        self.client = client or WorkflowClient()
        self.session_factory = session_factory
        self.interval = interval if interval is not None else settings.workflow_poll_interval_seconds
        self.completion_confidence = (
            completion_confidence
            if completion_confidence is not None
            else settings.workflow_completion_confidence
        )
        self.on_complete = on_complete
        self._sessions: dict[UUID, PollTask] = {}
        self._polling: dict[str, PollTask] = {}
        self._draining: set[asyncio.Task] = set()

    # ============== Caller messages ==============

    def sync(
        self,
        investigation_id: UUID,
        findings: Iterable[Any],
        on_complete: Optional[CompletionCallback] = None,
    ) -> PollState:
        """
        Reconcile the session's poll task with its current findings.

        Returns the session's state afterwards.

        Raises:
            ConfigurationError: a loop would start but the workflow is not configured
        """
        current = self._sessions.get(investigation_id)
        candidate = select_workflow_finding(findings)

        if candidate is None:
            return self._settle(current, "no_workflow_finding")

        if is_terminal_payload(candidate.data):
            return self._settle(current, "completed_elsewhere")

        workorderid = candidate.workorderid
        if not is_pending_payload(candidate.data) or not workorderid:
            return self._settle(current, "no_pending_workorder")

        if current is not None and current.workorderid == workorderid:
            if current.active or current.state == PollState.COMPLETED:
                return current.state

        if current is not None and current.active:
            logger.info(
                "workorder_changed",
                investigation_id=str(investigation_id),
                previous=current.workorderid,
                workorderid=workorderid,
            )
            self._abandon(current, "workorder_changed")

        owner = self._polling.get(workorderid)
        if owner is not None and owner.active:
            logger.debug("workorder_already_polling", workorderid=workorderid)
            return PollState.POLLING

        self.client.ensure_configured()

        task = PollTask(
            investigation_id=investigation_id,
            finding_id=candidate.id,
            workorderid=workorderid,
            on_complete=on_complete or self.on_complete,
            state=PollState.POLLING,
        )
        self._sessions[investigation_id] = task
        self._polling[workorderid] = task
        task.handle = asyncio.create_task(self._run(task), name=f"poll:{workorderid}")
        update_active_poll_tasks(len(self._polling))

        logger.info(
            "polling_started",
            investigation_id=str(investigation_id),
            finding_id=str(candidate.id),
            workorderid=workorderid,
            interval=self.interval,
        )
        return PollState.POLLING

    async def sync_investigation(
        self,
        investigation_id: UUID,
        on_complete: Optional[CompletionCallback] = None,
    ) -> PollState:
        """Read the investigation's findings from the store and ``sync`` them."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(Finding).where(
                    Finding.investigation_id == investigation_id,
                    Finding.agent_type == WORKFLOW_AGENT_TYPE,
                )
            )
            findings = [CandidateFinding.coerce(f) for f in result.scalars().all()]
        return self.sync(investigation_id, findings, on_complete)

    def stop(self, investigation_id: UUID) -> bool:
        """Tear down a session. In-flight calls finish and their results are dropped."""
        task = self._sessions.pop(investigation_id, None)
        if task is None:
            return False
        self._abandon(task, "stopped")
        return True

    async def shutdown(self) -> None:
        """Cancel every loop, including ones already stopped but still mid-request, and wait for them."""
        handles = set()
        for task in list(self._sessions.values()):
            self._abandon(task, "shutdown")
            if task.handle is not None:
                handles.add(task.handle)
        self._sessions.clear()

        handles = [handle for handle in handles | self._draining if not handle.done()]
        for handle in handles:
            handle.cancel()
        if handles:
            await asyncio.gather(*handles, return_exceptions=True)

    def state(self, investigation_id: UUID) -> PollState:
        task = self._sessions.get(investigation_id)
        return task.state if task is not None else PollState.IDLE

    def task(self, investigation_id: UUID) -> Optional[PollTask]:
        return self._sessions.get(investigation_id)

    @property
    def active_count(self) -> int:
        return len(self._polling)

    # ============== Transitions ==============

    def _settle(self, current: Optional[PollTask], reason: str) -> PollState:
        if current is None:
            return PollState.IDLE
        if current.active:
            self._abandon(current, reason)
        return current.state

    def _abandon(self, task: PollTask, reason: str) -> None:
        if not task.active:
            return
        task.state = PollState.ABANDONED
        task.stop_event.set()
        self._release(task)
        self._drain(task)
        record_transition(PollState.ABANDONED.value)
        logger.info(
            "polling_abandoned",
            investigation_id=str(task.investigation_id),
            workorderid=task.workorderid,
            attempts=task.attempts,
            reason=reason,
        )

    def _drain(self, task: PollTask) -> None:
        """Keep a torn-down loop reachable until it exits, so shutdown can reap it."""
        handle = task.handle
        if handle is None or handle.done():
            return
        self._draining.add(handle)
        handle.add_done_callback(self._draining.discard)

    def _release(self, task: PollTask) -> None:
        if self._polling.get(task.workorderid) is task:
            del self._polling[task.workorderid]
        update_active_poll_tasks(len(self._polling))

    # ============== Loop ==============

    async def _run(self, task: PollTask) -> None:
        log = logger.bind(workorderid=task.workorderid, finding_id=str(task.finding_id))
        try:
            while task.active:
                task.attempts += 1
                result = await self._poll_once(task)

                if not task.active:
                    log.info("poll_result_discarded", outcome=result.status, attempt=task.attempts)
                    return

                if result.complete and await self._complete(task, result):
                    return

                await self._wait(task)
        finally:
            self._release(task)

    async def _poll_once(self, task: PollTask) -> PollResult:
        try:
            result = await self.client.check_status(task.workorderid)
        except Exception as e:
            result = PollResult(status="error", message=str(e))

        record_poll(result.status)
        if result.status == "error":
            logger.warning(
                "workflow_poll_error",
                workorderid=task.workorderid,
                attempt=task.attempts,
                error=result.message,
            )
        elif result.pending:
            logger.debug("workflow_still_pending", workorderid=task.workorderid, attempt=task.attempts)
        return result

    async def _wait(self, task: PollTask) -> None:
        try:
            await asyncio.wait_for(task.stop_event.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            pass

    async def _complete(self, task: PollTask, result: PollResult) -> bool:
        """
        Merge the terminal payload. Returns True when the task reached a
        terminal state, False when it should keep polling.
        """
        try:
            written = await self._merge(task, result.data)
        except Exception as e:
            logger.error(
                "workflow_merge_failed",
                workorderid=task.workorderid,
                finding_id=str(task.finding_id),
                error=str(e),
            )
            return False

        if not task.active:
            logger.info("completion_after_teardown", workorderid=task.workorderid, written=written)
            return True

        if not written:
            task.state = PollState.ABANDONED
            self._release(task)
            record_transition(PollState.ABANDONED.value)
            logger.info("workflow_completed_elsewhere", workorderid=task.workorderid)
            return True

        task.state = PollState.COMPLETED
        self._release(task)
        record_transition(PollState.COMPLETED.value)
        logger.info(
            "workflow_completed",
            workorderid=task.workorderid,
            finding_id=str(task.finding_id),
            attempts=task.attempts,
        )

        await deliver_completion(task.on_complete, CompletionEvent(
            investigation_id=task.investigation_id,
            finding_id=task.finding_id,
            workorderid=task.workorderid,
            data=result.data,
            message=compose_completion_message(result.data),
            attempts=task.attempts,
        ))
        return True

    async def _merge(self, task: PollTask, data: dict) -> bool:
        """Compare-and-set: only a finding not yet verified is overwritten."""
        async with self.session_factory() as db:
            outcome = await db.execute(
                update(Finding)
                .where(
                    Finding.id == task.finding_id,
                    Finding.verification_status != VerificationStatus.VERIFIED,
                )
                .values(
                    data=data,
                    confidence_score=self.completion_confidence,
                    verification_status=VerificationStatus.VERIFIED,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return outcome.rowcount == 1


# Global supervisor instance
_supervisor: Optional[PollingSupervisor] = None


def get_polling_supervisor() -> PollingSupervisor:
    """Get the process-wide polling supervisor."""
    global _supervisor
    if _supervisor is None:
        _supervisor = PollingSupervisor(on_complete=EmailCompletionSink())
    return _supervisor


async def shutdown_polling_supervisor() -> None:
    global _supervisor
    if _supervisor is not None:
        await _supervisor.shutdown()
        _supervisor = None

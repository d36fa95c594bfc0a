"""
Status Resolver

Turns a device completion report into operator notifications.

Resolution is two-level for heartbeats:
    report.task -> HeartBeat
    report.payload (a task id, or empty) -> kind of the task currently running

Resolution never touches the session queues; it only reads the
correlation table. An unknown reported task id is a hard error (registry loss
or a forged report) and nothing is sent to the operator in that case; a bad
payload is reported only after the completion message went out.
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from .errors import PayloadDecodeError
from .models import TaskKind, TaskStatusReport
from .notifier import OperatorNotifier
from .registry import TaskRegistry

logger = logging.getLogger("status_resolver")

NOTHING_RUNNING_MESSAGE = "No task is currently running."


@dataclass
class ReportResolution:
    """Everything the operator should be told about one report."""
    task_id: str
    kind: TaskKind
    status: str
    messages: List[str] = field(default_factory=list)
    image: Optional[bytes] = None
    running_task_id: Optional[str] = None
    running_kind: Optional[TaskKind] = None
    delivered: bool = True


def decode_image(task_id: str, payload: str) -> bytes:
    try:
        return base64.b64decode(payload.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise PayloadDecodeError(task_id, str(e)) from e


def start_resolution(registry: TaskRegistry, report: TaskStatusReport) -> ReportResolution:
    """
    Resolve the reported task id and build the completion message.

    Raises:
        TaskNotFoundError: report.task was never issued by this registry
    """
    kind = registry.resolve_kind(report.task)
    resolution = ReportResolution(task_id=report.task, kind=kind, status=report.status)
    resolution.messages.append(f"Task {kind} finished. Status: {report.status}")
    return resolution


def resolve_payload(
    registry: TaskRegistry,
    report: TaskStatusReport,
    resolution: ReportResolution,
) -> ReportResolution:
    """
    Interpret the payload according to the resolved kind.

    Raises:
        TaskNotFoundError: a heartbeat names a running task id that was
            never issued by this registry
        PayloadDecodeError: image payload is not valid base64
    """
    kind = resolution.kind
    if kind.carries_image:
        if report.payload.strip():
            resolution.image = decode_image(report.task, report.payload)
        else:
            logger.warning(f"Report for {kind} ({report.task}) carried no image")

    elif kind == TaskKind.HEART_BEAT:
        running_id = report.payload.strip()
        if not running_id:
            resolution.messages.append(NOTHING_RUNNING_MESSAGE)
        else:
            running_kind = registry.resolve_kind(running_id)
            resolution.running_task_id = running_id
            resolution.running_kind = running_kind
            resolution.messages.append(f"{running_kind} is running, id {running_id}")

    return resolution


def resolve_report(registry: TaskRegistry, report: TaskStatusReport) -> ReportResolution:
    """Resolve a report without side effects."""
    return resolve_payload(registry, report, start_resolution(registry, report))


class StatusResolver:
    """
    Resolves reports and delivers the outcome through the notifier.

    The completion message goes out as soon as the task kind is known, so
    the operator hears about a finished task even when its payload turns
    out to be unusable. Delivery failures are logged and recorded on the
    resolution; they never fail the report itself.
    """

    def __init__(self, registry: TaskRegistry, notifier: OperatorNotifier):
        self._registry = registry
        self._notifier = notifier

    async def _deliver(self, resolution: ReportResolution, send: Callable[[], Awaitable[None]]) -> None:
        try:
            await send()
        except Exception as e:
            resolution.delivered = False
            logger.error(f"Failed to notify operator about task {resolution.task_id}: {e}")

    async def handle(self, report: TaskStatusReport) -> ReportResolution:
        resolution = start_resolution(self._registry, report)

        logger.info(
            f"Report: device={report.device} user={report.user} "
            f"task={report.task} kind={resolution.kind} status={report.status}"
        )

        completion = resolution.messages[0]
        await self._deliver(resolution, lambda: self._notifier.send_text(completion))

        resolve_payload(self._registry, report, resolution)

        for message in resolution.messages[1:]:
            await self._deliver(resolution, lambda message=message: self._notifier.send_text(message))
        if resolution.image is not None:
            image = resolution.image
            await self._deliver(resolution, lambda: self._notifier.send_photo(image))

        return resolution

"""
Task Registry

Canonical in-memory store of devices, their user sessions and the pending
task queue of every session, plus the task id -> task kind correlation
table used to resolve asynchronous status reports.

HARD CONSTRAINTS:
- A task id enters the correlation table in the same critical section that
  appends the task to a session queue
- Every enqueued kind other than CaptureImage is followed, in the same
  critical section, by a companion CaptureImage task
- Correlation entries are never removed, so late reports still resolve
- Readers only ever see snapshots; internal Device/UserSession objects never
  leave the registry
- Volatile: nothing is persisted across restarts
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from .errors import (
    ConcurrentAccessError,
    DeviceNotFoundError,
    SessionNotFoundError,
    TaskNotFoundError,
)
from .models import Device, Task, TaskKind, UserSession

logger = logging.getLogger("task_registry")

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------
DEFAULT_LOCK_TIMEOUT = 5.0  # seconds


def compute_single_session(devices: Mapping[str, Device]) -> bool:
    """True iff there is exactly one device and it has exactly one session."""
    if len(devices) != 1:
        return False
    device = next(iter(devices.values()))
    return len(device.sessions) == 1


@dataclass(frozen=True)
class DeviceSummary:
    """Read-only projection of a device for listings."""
    id: str
    display_name: str
    pending: Dict[str, int]


# -----------------------------------------------------------------------------
# Task Registry
# -----------------------------------------------------------------------------
class TaskRegistry:
    """
    Concurrent registry of Device -> UserSession -> pending tasks.

    One re-entrant lock guards both the device map and the correlation
    table. Critical sections are plain dict/list operations, so holding the
    lock never blocks on I/O.
    """

    def __init__(
        self,
        allowed_devices: Optional[Mapping[str, str]] = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ):
        """
        Initialize registry.

        Args:
            allowed_devices: device id -> display name. When given, only these
                devices are admitted on poll (closed fleet). None means open
                enrollment.
            lock_timeout: seconds to wait for the registry lock before
                failing with ConcurrentAccessError
        """
        self._devices: Dict[str, Device] = {}
        self._correlation: Dict[str, TaskKind] = {}
        self._allowed_devices = dict(allowed_devices) if allowed_devices is not None else None
        self._lock = threading.RLock()
        self._lock_timeout = lock_timeout
        self._single_session = False

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self._lock_timeout):
            logger.error(f"Registry lock not acquired within {self._lock_timeout}s")
            raise ConcurrentAccessError(self._lock_timeout)
        try:
            yield
        finally:
            self._lock.release()

    def _refresh_single_session(self) -> None:
        value = compute_single_session(self._devices)
        if value != self._single_session:
            logger.debug(f"Single-session flag changed: {self._single_session} -> {value}")
        self._single_session = value

    def _get_device(self, device_id: str) -> Device:
        device = self._devices.get(device_id)
        if device is None:
            raise DeviceNotFoundError(device_id)
        return device

    def _get_session(self, device_id: str, session_id: str) -> UserSession:
        session = self._get_device(device_id).sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(device_id, session_id)
        return session

    @staticmethod
    def _snapshot_device(device: Device) -> Device:
        return Device(
            id=device.id,
            display_name=device.display_name,
            sessions={
                sid: UserSession(id=s.id, tasks=list(s.tasks))
                for sid, s in device.sessions.items()
            },
        )

    # -------------------------------------------------------------------------
    # Allow-list
    # -------------------------------------------------------------------------

    @property
    def allowed_devices(self) -> Optional[Dict[str, str]]:
        if self._allowed_devices is None:
            return None
        return dict(self._allowed_devices)

    def is_allowed(self, device_id: str) -> bool:
        return self._allowed_devices is None or device_id in self._allowed_devices

    # -------------------------------------------------------------------------
    # Device / Session Admission
    # -------------------------------------------------------------------------

    def register_or_get_device(self, device_id: str) -> Optional[Device]:
        """
        Return the device, creating it on first sight.

        Returns None when an allow-list is configured and does not contain
        the device; the device is then never materialized.
        """
        with self._locked():
            device = self._admit_device(device_id)
            return self._snapshot_device(device) if device else None

    def _admit_device(self, device_id: str) -> Optional[Device]:
        device = self._devices.get(device_id)
        if device is not None:
            return device

        if not self.is_allowed(device_id):
            logger.warning(f"Refused poll from device not in allow-list: {device_id}")
            return None

        display_name = device_id
        if self._allowed_devices is not None:
            display_name = self._allowed_devices.get(device_id) or device_id

        device = Device(id=device_id, display_name=display_name)
        self._devices[device_id] = device
        self._refresh_single_session()
        logger.info(f"Registered device: {device_id} (name={display_name})")
        return device

    def get_or_create_session(self, device_id: str, session_id: str) -> UserSession:
        """Return the session, creating an empty one on first reference."""
        with self._locked():
            session = self._admit_session(self._get_device(device_id), session_id)
            return UserSession(id=session.id, tasks=list(session.tasks))

    def _admit_session(self, device: Device, session_id: str) -> UserSession:
        session = device.sessions.get(session_id)
        if session is None:
            session = UserSession(id=session_id)
            device.sessions[session_id] = session
            self._refresh_single_session()
            logger.info(f"Registered user session: {device.id}/{session_id}")
        return session

    # -------------------------------------------------------------------------
    # Queue Operations
    # -------------------------------------------------------------------------

    def enqueue(self, device_id: str, session_id: str, kind: TaskKind) -> Task:
        """
        Append a task to a session queue and record it for correlation.

        Any kind other than CaptureImage is followed by a companion
        CaptureImage task so the operator gets a screenshot of the outcome.

        Returns:
            The primary task (never the companion)
        """
        with self._locked():
            session = self._get_session(device_id, session_id)

            task = Task.new(kind)
            session.tasks.append(task)
            self._correlation[task.id] = task.kind

            if kind != TaskKind.CAPTURE_IMAGE:
                companion = Task.capture_image_task()
                session.tasks.append(companion)
                self._correlation[companion.id] = companion.kind

        logger.info(f"Enqueued {kind} ({task.id}) for {device_id}/{session_id}")
        return task

    def enqueue_all(self, kind: TaskKind) -> List[Task]:
        """Enqueue one task of this kind on every known session."""
        with self._locked():
            targets = [
                (device.id, session_id)
                for device in self._devices.values()
                for session_id in device.sessions
            ]
            return [self.enqueue(device_id, session_id, kind) for device_id, session_id in targets]

    def drain(self, device_id: str, session_id: str) -> List[Task]:
        """Return and clear the pending tasks of a session."""
        with self._locked():
            session = self._get_session(device_id, session_id)
            tasks, session.tasks = session.tasks, []
        if tasks:
            logger.info(f"Drained {len(tasks)} task(s) for {device_id}/{session_id}")
        return tasks

    def poll(self, device_id: str, session_id: str) -> List[Task]:
        """
        Device poll: admit device and session as needed, then drain.

        A device refused by the allow-list gets an empty list and leaves no
        trace in the registry.
        """
        with self._locked():
            device = self._admit_device(device_id)
            if device is None:
                return []
            self._admit_session(device, session_id)
            return self.drain(device_id, session_id)

    # -------------------------------------------------------------------------
    # Correlation
    # -------------------------------------------------------------------------

    def resolve_kind(self, task_id: str) -> TaskKind:
        with self._locked():
            kind = self._correlation.get(task_id)
        if kind is None:
            raise TaskNotFoundError(task_id)
        return kind

    # -------------------------------------------------------------------------
    # Read-Only Projections
    # -------------------------------------------------------------------------

    def list_device_ids(self, use_display_name: bool = False) -> List[str]:
        with self._locked():
            return [
                d.display_name if use_display_name else d.id
                for d in self._devices.values()
            ]

    def list_session_ids(self, device_id: str) -> List[str]:
        with self._locked():
            return list(self._get_device(device_id).sessions)

    def list_devices(self) -> List[DeviceSummary]:
        with self._locked():
            return [
                DeviceSummary(
                    id=d.id,
                    display_name=d.display_name,
                    pending={sid: len(s.tasks) for sid, s in d.sessions.items()},
                )
                for d in self._devices.values()
            ]

    def get_device(self, device_id: str) -> Device:
        with self._locked():
            return self._snapshot_device(self._get_device(device_id))

    @property
    def is_single_session(self) -> bool:
        """
        Cached single device/session flag.

        Refreshed whenever a device or session is admitted; may be one
        generation stale when read concurrently with an admission.
        """
        return self._single_session

    def single_device_and_session(self) -> Optional[Tuple[Device, UserSession]]:
        with self._locked():
            if not compute_single_session(self._devices):
                return None
            device = self._snapshot_device(next(iter(self._devices.values())))
        session = next(iter(device.sessions.values()))
        return device, session

    def stats(self) -> Dict[str, int]:
        with self._locked():
            return {
                "devices": len(self._devices),
                "sessions": sum(len(d.sessions) for d in self._devices.values()),
                "pending_tasks": sum(
                    len(s.tasks) for d in self._devices.values() for s in d.sessions.values()
                ),
                "issued_tasks": len(self._correlation),
            }

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def rename_device(self, device_id: str, new_name: str) -> None:
        """In-memory display name change; not persisted."""
        with self._locked():
            device = self._get_device(device_id)
            old_name, device.display_name = device.display_name, new_name
        logger.info(f"Renamed device {device_id}: {old_name} -> {new_name}")

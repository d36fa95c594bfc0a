"""
Task Controller Models

Domain model:
- TaskKind: closed catalog of remote operations a device can execute
- Task: one enqueued unit of work (opaque id + kind), immutable
- UserSession: ordered pending task list of one user on one device
- Device: a polling client with its user sessions

API models:
- Request/response bodies of the device-facing poll/report endpoints
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, Field

from .errors import UnknownTaskKindError


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------
class TaskKind(str, Enum):
    """
    Remote operations understood by the device client.

    Declaration order is the order choices are presented to the operator.
    """
    CAPTURE_IMAGE = "CaptureImage"
    CAPTURE_IMAGE_NOW = "CaptureImageNow"
    HEART_BEAT = "HeartBeat"
    LINK_START_BASE = "LinkStart-Base"
    LINK_START_WAKE_UP = "LinkStart-WakeUp"
    LINK_START_COMBAT = "LinkStart-Combat"
    LINK_START_RECRUITING = "LinkStart-Recruiting"
    LINK_START_MALL = "LinkStart-Mall"
    LINK_START_MISSION = "LinkStart-Mission"
    LINK_START_AUTO_ROGUELIKE = "LinkStart-AutoRoguelike"
    LINK_START_RECLAMATION_ALGORITHM = "LinkStart-ReclamationAlgorithm"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str) -> "TaskKind":
        """Map a wire string to its TaskKind, rejecting anything else."""
        try:
            return cls(value)
        except ValueError:
            raise UnknownTaskKindError(value) from None

    @classmethod
    def catalog(cls) -> List["TaskKind"]:
        return list(cls)

    @property
    def carries_image(self) -> bool:
        """Whether a completion report for this kind carries a screenshot."""
        return self in (TaskKind.CAPTURE_IMAGE, TaskKind.CAPTURE_IMAGE_NOW)


# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Task:
    """A single unit of work handed to a device."""
    id: str
    kind: TaskKind

    @classmethod
    def new(cls, kind: TaskKind) -> "Task":
        return cls(id=str(uuid.uuid4()), kind=kind)

    @classmethod
    def capture_image_task(cls) -> "Task":
        return cls.new(TaskKind.CAPTURE_IMAGE)

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "type": self.kind.value}


@dataclass
class UserSession:
    """Pending tasks of one user session on a device. Owned by the registry."""
    id: str
    tasks: List[Task] = field(default_factory=list)


@dataclass
class Device:
    """A polling device and its user sessions."""
    id: str
    display_name: str = ""
    sessions: Dict[str, UserSession] = field(default_factory=dict)

    def __post_init__(self):
        if not self.display_name:
            self.display_name = self.id


# -----------------------------------------------------------------------------
# API Models
# -----------------------------------------------------------------------------
class GetTaskRequest(BaseModel):
    """Poll request sent by a device."""
    user: str = Field(..., min_length=1)
    device: str = Field(..., min_length=1)


class TaskItem(BaseModel):
    id: str
    type: str


class GetTaskResponse(BaseModel):
    tasks: List[TaskItem] = Field(default_factory=list)


class TaskStatusReport(BaseModel):
    """Completion report sent by a device."""
    user: str
    device: str
    task: str
    status: str
    payload: str = ""


class ReportResponse(BaseModel):
    status: str = "ok"
    task_type: str
    notified: bool = True

"""
Unit Tests for Task Controller Models

Test coverage for:
- TaskKind wire strings and catalog order
- Rejection of unknown task kinds
- Task identity and wire form
- Device display name defaulting
"""

import pytest
from dataclasses import FrozenInstanceError

from task_controller.errors import InvalidSelectionError, UnknownTaskKindError
from task_controller.models import Device, GetTaskResponse, Task, TaskItem, TaskKind


# -----------------------------------------------------------------------------
# TaskKind Tests
# -----------------------------------------------------------------------------
class TestTaskKind:
    """Tests for the closed TaskKind catalog."""

    def test_wire_strings(self):
        """Wire strings match what MAA clients expect."""
        assert TaskKind.CAPTURE_IMAGE.value == "CaptureImage"
        assert TaskKind.CAPTURE_IMAGE_NOW.value == "CaptureImageNow"
        assert TaskKind.HEART_BEAT.value == "HeartBeat"
        assert TaskKind.LINK_START_COMBAT.value == "LinkStart-Combat"
        assert TaskKind.LINK_START_RECLAMATION_ALGORITHM.value == "LinkStart-ReclamationAlgorithm"

    def test_str_is_wire_string(self):
        assert str(TaskKind.LINK_START_MALL) == "LinkStart-Mall"
        assert f"{TaskKind.LINK_START_BASE}" == "LinkStart-Base"

    def test_parse_round_trips_every_kind(self):
        for kind in TaskKind:
            assert TaskKind.parse(kind.value) is kind

    def test_parse_unknown_kind_raises(self):
        """Unknown strings are typed input errors, not new variants."""
        with pytest.raises(UnknownTaskKindError) as exc_info:
            TaskKind.parse("LinkStart-Fishing")
        assert exc_info.value.code == "UNKNOWN_TASK_KIND"
        assert isinstance(exc_info.value, InvalidSelectionError)

    def test_parse_is_case_sensitive(self):
        with pytest.raises(UnknownTaskKindError):
            TaskKind.parse("captureimage")

    def test_catalog_order(self):
        catalog = TaskKind.catalog()
        assert catalog[:3] == [TaskKind.CAPTURE_IMAGE, TaskKind.CAPTURE_IMAGE_NOW, TaskKind.HEART_BEAT]
        assert len(catalog) == 11
        assert all(k.value.startswith("LinkStart-") for k in catalog[3:])

    def test_carries_image(self):
        assert TaskKind.CAPTURE_IMAGE.carries_image
        assert TaskKind.CAPTURE_IMAGE_NOW.carries_image
        assert not TaskKind.HEART_BEAT.carries_image
        assert not TaskKind.LINK_START_COMBAT.carries_image


# -----------------------------------------------------------------------------
# Task Tests
# -----------------------------------------------------------------------------
class TestTask:
    """Tests for Task creation."""

    def test_new_generates_unique_ids(self):
        ids = {Task.new(TaskKind.LINK_START_MISSION).id for _ in range(500)}
        assert len(ids) == 500

    def test_task_is_immutable(self):
        task = Task.new(TaskKind.CAPTURE_IMAGE)
        with pytest.raises(FrozenInstanceError):
            task.kind = TaskKind.HEART_BEAT

    def test_capture_image_task(self):
        assert Task.capture_image_task().kind == TaskKind.CAPTURE_IMAGE

    def test_to_dict_uses_type_key(self):
        task = Task(id="abc", kind=TaskKind.LINK_START_WAKE_UP)
        assert task.to_dict() == {"id": "abc", "type": "LinkStart-WakeUp"}

    def test_response_model_from_tasks(self):
        tasks = [Task(id="1", kind=TaskKind.HEART_BEAT)]
        response = GetTaskResponse(tasks=[TaskItem(**t.to_dict()) for t in tasks])
        assert response.model_dump() == {"tasks": [{"id": "1", "type": "HeartBeat"}]}


# -----------------------------------------------------------------------------
# Device Tests
# -----------------------------------------------------------------------------
class TestDevice:
    def test_display_name_defaults_to_id(self):
        assert Device(id="emulator-5554").display_name == "emulator-5554"

    def test_explicit_display_name(self):
        assert Device(id="x", display_name="Phone").display_name == "Phone"

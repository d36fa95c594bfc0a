"""
Unit Tests for the Status Resolver

Test coverage for:
- Completion messages
- Image payload decoding for capture kinds
- Two-level heartbeat resolution
- Unknown task ids
- Notifier delivery order
"""

import base64

import pytest

from task_controller.errors import PayloadDecodeError, TaskNotFoundError
from task_controller.models import TaskKind, TaskStatusReport
from task_controller.status_resolver import (
    NOTHING_RUNNING_MESSAGE,
    StatusResolver,
    decode_image,
    resolve_report,
)

from tests.conftest import DEVICE_ID, SESSION_ID, async_test

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-screenshot"


def make_report(task_id: str, payload: str = "", status: str = "SUCCESS") -> TaskStatusReport:
    return TaskStatusReport(
        user=SESSION_ID,
        device=DEVICE_ID,
        task=task_id,
        status=status,
        payload=payload,
    )


# -----------------------------------------------------------------------------
# Image Decoding Tests
# -----------------------------------------------------------------------------
class TestDecodeImage:
    def test_decode_valid_base64(self):
        encoded = base64.b64encode(PNG_BYTES).decode()
        assert decode_image("t", encoded) == PNG_BYTES

    def test_decode_invalid_base64(self):
        with pytest.raises(PayloadDecodeError) as exc_info:
            decode_image("t1", "not base64 at all!!")
        assert exc_info.value.details["task_id"] == "t1"


# -----------------------------------------------------------------------------
# Resolution Tests
# -----------------------------------------------------------------------------
class TestResolveReport:
    """Tests for resolve_report without a notifier."""

    def test_plain_task_message(self, single_session_registry):
        registry = single_session_registry
        task = registry.enqueue(DEVICE_ID, SESSION_ID, TaskKind.LINK_START_MALL)

        resolution = resolve_report(registry, make_report(task.id, status="FAILED"))

        assert resolution.kind == TaskKind.LINK_START_MALL
        assert resolution.messages == ["Task LinkStart-Mall finished. Status: FAILED"]
        assert resolution.image is None

    def test_capture_image_decodes_payload(self, single_session_registry):
        registry = single_session_registry
        task = registry.enqueue(DEVICE_ID, SESSION_ID, TaskKind.CAPTURE_IMAGE)
        payload = base64.b64encode(PNG_BYTES).decode()

        resolution = resolve_report(registry, make_report(task.id, payload))

        assert resolution.image == PNG_BYTES
        assert resolution.messages == ["Task CaptureImage finished. Status: SUCCESS"]

    def test_capture_image_now_decodes_payload(self, single_session_registry):
        registry = single_session_registry
        task = registry.enqueue(DEVICE_ID, SESSION_ID, TaskKind.CAPTURE_IMAGE_NOW)
        payload = base64.b64encode(PNG_BYTES).decode()

        assert resolve_report(registry, make_report(task.id, payload)).image == PNG_BYTES

    def test_capture_with_empty_payload_has_no_image(self, single_session_registry):
        registry = single_session_registry
        task = registry.enqueue(DEVICE_ID, SESSION_ID, TaskKind.CAPTURE_IMAGE)

        resolution = resolve_report(registry, make_report(task.id, ""))

        assert resolution.image is None
        assert len(resolution.messages) == 1

    @async_test
    async def test_capture_with_corrupt_payload(self, single_session_registry, mock_notifier):
        """The completion text goes out before the payload is rejected."""
        registry = single_session_registry
        task = registry.enqueue(DEVICE_ID, SESSION_ID, TaskKind.CAPTURE_IMAGE)

        with pytest.raises(PayloadDecodeError):
            resolve_report(registry, make_report(task.id, "%%%"))

        with pytest.raises(PayloadDecodeError):
            await StatusResolver(registry, mock_notifier).handle(make_report(task.id, "%%%"))
        mock_notifier.send_text.assert_awaited_once_with("Task CaptureImage finished. Status: SUCCESS")
        mock_notifier.send_photo.assert_not_awaited()

    def test_unknown_task_id(self, registry):
        with pytest.raises(TaskNotFoundError):
            resolve_report(registry, make_report("forged-id"))

    def test_resolution_does_not_touch_queues(self, single_session_registry):
        registry = single_session_registry
        task = registry.enqueue(DEVICE_ID, SESSION_ID, TaskKind.LINK_START_BASE)

        resolve_report(registry, make_report(task.id))

        assert len(registry.drain(DEVICE_ID, SESSION_ID)) == 2


# -----------------------------------------------------------------------------
# Heartbeat Tests
# -----------------------------------------------------------------------------
class TestHeartbeat:
    """Tests for the heartbeat indirection: payload names the running task."""

    def test_heartbeat_names_running_task(self, single_session_registry):
        registry = single_session_registry
        combat = registry.enqueue(DEVICE_ID, SESSION_ID, TaskKind.LINK_START_COMBAT)
        heartbeat = registry.enqueue(DEVICE_ID, SESSION_ID, TaskKind.HEART_BEAT)
        registry.drain(DEVICE_ID, SESSION_ID)

        resolution = resolve_report(registry, make_report(heartbeat.id, combat.id))

        assert resolution.kind == TaskKind.HEART_BEAT
        assert resolution.running_task_id == combat.id
        assert resolution.running_kind == TaskKind.LINK_START_COMBAT
        assert resolution.messages == [
            "Task HeartBeat finished. Status: SUCCESS",
            f"LinkStart-Combat is running, id {combat.id}",
        ]

    def test_heartbeat_with_nothing_running(self, single_session_registry):
        registry = single_session_registry
        heartbeat = registry.enqueue(DEVICE_ID, SESSION_ID, TaskKind.HEART_BEAT)

        resolution = resolve_report(registry, make_report(heartbeat.id, ""))

        assert resolution.running_task_id is None
        assert resolution.messages[-1] == NOTHING_RUNNING_MESSAGE

    @async_test
    async def test_heartbeat_with_unknown_running_id(self, single_session_registry, mock_notifier):
        registry = single_session_registry
        heartbeat = registry.enqueue(DEVICE_ID, SESSION_ID, TaskKind.HEART_BEAT)

        with pytest.raises(TaskNotFoundError) as exc_info:
            await StatusResolver(registry, mock_notifier).handle(make_report(heartbeat.id, "not-a-task"))
        assert exc_info.value.details["task_id"] == "not-a-task"
        mock_notifier.send_text.assert_awaited_once_with("Task HeartBeat finished. Status: SUCCESS")


# -----------------------------------------------------------------------------
# Delivery Tests
# -----------------------------------------------------------------------------
class TestStatusResolver:
    """Tests for StatusResolver.handle delivering through the notifier."""

    @async_test
    async def test_sends_text_then_photo(self, single_session_registry, mock_notifier):
        registry = single_session_registry
        task = registry.enqueue(DEVICE_ID, SESSION_ID, TaskKind.CAPTURE_IMAGE)
        payload = base64.b64encode(PNG_BYTES).decode()

        await StatusResolver(registry, mock_notifier).handle(make_report(task.id, payload))

        mock_notifier.send_text.assert_awaited_once_with("Task CaptureImage finished. Status: SUCCESS")
        mock_notifier.send_photo.assert_awaited_once_with(PNG_BYTES)

    @async_test
    async def test_heartbeat_sends_two_texts(self, single_session_registry, mock_notifier):
        registry = single_session_registry
        heartbeat = registry.enqueue(DEVICE_ID, SESSION_ID, TaskKind.HEART_BEAT)

        await StatusResolver(registry, mock_notifier).handle(make_report(heartbeat.id))

        texts = [c.args[0] for c in mock_notifier.send_text.await_args_list]
        assert texts == ["Task HeartBeat finished. Status: SUCCESS", NOTHING_RUNNING_MESSAGE]
        mock_notifier.send_photo.assert_not_awaited()

    @async_test
    async def test_unknown_task_sends_nothing(self, registry, mock_notifier):
        with pytest.raises(TaskNotFoundError):
            await StatusResolver(registry, mock_notifier).handle(make_report("forged"))

        mock_notifier.send_text.assert_not_awaited()
        mock_notifier.send_photo.assert_not_awaited()

    @async_test
    async def test_delivery_failure_is_recorded(self, single_session_registry, mock_notifier):
        registry = single_session_registry
        heartbeat = registry.enqueue(DEVICE_ID, SESSION_ID, TaskKind.HEART_BEAT)
        mock_notifier.send_text.side_effect = RuntimeError("telegram down")

        resolution = await StatusResolver(registry, mock_notifier).handle(make_report(heartbeat.id))

        assert resolution.delivered is False
        assert resolution.kind == TaskKind.HEART_BEAT
        # Later messages are still attempted
        assert mock_notifier.send_text.await_count == 2

    @async_test
    async def test_successful_delivery(self, single_session_registry, mock_notifier):
        registry = single_session_registry
        task = registry.enqueue(DEVICE_ID, SESSION_ID, TaskKind.LINK_START_MISSION)

        resolution = await StatusResolver(registry, mock_notifier).handle(make_report(task.id))

        assert resolution.delivered is True

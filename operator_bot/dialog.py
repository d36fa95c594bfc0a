"""
Operator Dialog - Task Composition State Machine

Transport-independent core of the operator chat. Every turn is either a
free-text command or a selection token coming back from an inline choice.
Each permitted turn yields exactly one BotReply; turns from anyone but the
configured operator yield None and change nothing.

Append-task flow:
    IDLE --/appendtask--> AWAITING_DEVICE --d:--> AWAITING_SESSION --u:-->
    AWAITING_TASK_KIND --t:--> enqueue, IDLE
    (single device with single session: IDLE --/appendtask--> AWAITING_TASK_KIND)

Current-task (heartbeat) flow:
    IDLE --/getcurrenttask--> AWAITING_DEVICE_FOR_HEARTBEAT --d:-->
    AWAITING_SESSION_FOR_HEARTBEAT --u:--> enqueue HeartBeat, IDLE
    (single device with single session: enqueue HeartBeat immediately)

Selection tokens:
    d:<device_id>   u:<session_id>   t:<TaskKind>
    Tokens over 64 bytes are replaced by a hashed alias (d:#..., u:#...)
    that the engine maps back when the selection arrives.

A token of a known category arriving in a step that does not expect it is
an invalid state; a malformed token is an invalid selection. Neither
changes the dialog state.
"""

import hashlib
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from task_controller.errors import (
    DeviceNotFoundError,
    InvalidSelectionError,
    InvalidStateError,
    SessionNotFoundError,
)
from task_controller.models import TaskKind
from task_controller.registry import TaskRegistry

logger = logging.getLogger("operator_dialog")

ConversationId = int


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------
class BotCommand(str, Enum):
    """Supported bot commands."""
    START = "start"
    HELP = "help"
    APPEND_TASK = "appendtask"
    SCREENSHOT_ALL = "screenshotall"
    GET_CURRENT_TASK = "getcurrenttask"
    RENAME_DEVICE = "renamedevice"
    DEVICES = "devices"


# Descriptions registered with Telegram (order = menu order)
COMMAND_DESCRIPTIONS: Dict[BotCommand, str] = {
    BotCommand.APPEND_TASK: "Append task",
    BotCommand.SCREENSHOT_ALL: "Take screenshot for all bound devices",
    BotCommand.GET_CURRENT_TASK: "Get current running task",
    BotCommand.DEVICES: "List devices and pending tasks",
    BotCommand.RENAME_DEVICE: "Rename a device: /renamedevice <id> <name>",
    BotCommand.HELP: "Show help",
}


class DialogStep(str, Enum):
    IDLE = "idle"
    AWAITING_DEVICE = "awaiting_device"
    AWAITING_SESSION = "awaiting_session"
    AWAITING_TASK_KIND = "awaiting_task_kind"
    AWAITING_DEVICE_FOR_HEARTBEAT = "awaiting_device_for_heartbeat"
    AWAITING_SESSION_FOR_HEARTBEAT = "awaiting_session_for_heartbeat"


class TokenCategory(str, Enum):
    """Two-character prefixes of selection tokens."""
    DEVICE = "d:"
    SESSION = "u:"
    TASK_KIND = "t:"


EXPECTED_CATEGORY: Dict[DialogStep, TokenCategory] = {
    DialogStep.AWAITING_DEVICE: TokenCategory.DEVICE,
    DialogStep.AWAITING_DEVICE_FOR_HEARTBEAT: TokenCategory.DEVICE,
    DialogStep.AWAITING_SESSION: TokenCategory.SESSION,
    DialogStep.AWAITING_SESSION_FOR_HEARTBEAT: TokenCategory.SESSION,
    DialogStep.AWAITING_TASK_KIND: TokenCategory.TASK_KIND,
}

INVALID_FORMAT_REPLIES: Dict[TokenCategory, str] = {
    TokenCategory.DEVICE: "Invalid device id",
    TokenCategory.SESSION: "Invalid user id",
    TokenCategory.TASK_KIND: "Invalid task",
}


# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class DialogState:
    step: DialogStep = DialogStep.IDLE
    device_id: Optional[str] = None
    session_id: Optional[str] = None


IDLE = DialogState()


@dataclass(frozen=True)
class Choice:
    """One selectable option: what the operator sees and the token sent back."""
    label: str
    token: str


@dataclass
class BotReply:
    text: str
    choices: List[Choice] = field(default_factory=list)


@dataclass
class ParsedCommand:
    """Parsed command from user input."""
    command: BotCommand
    args: List[str]
    raw_text: str


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------
def parse_command(text: str) -> Optional[ParsedCommand]:
    """Parse user input into a structured command."""
    if not text.startswith("/"):
        return None

    parts = text.split()
    # Group chats append the bot name: /appendtask@my_bot
    command_str = parts[0][1:].split("@", 1)[0].lower()

    try:
        command = BotCommand(command_str)
    except ValueError:
        return None

    return ParsedCommand(
        command=command,
        args=parts[1:] if len(parts) > 1 else [],
        raw_text=text
    )


# Telegram rejects callback_data longer than this
MAX_TOKEN_BYTES = 64


def make_token(category: TokenCategory, value: str) -> str:
    return f"{category.value}{value}"


def short_token(token: str) -> str:
    """Stable short stand-in for a token that does not fit in callback data."""
    category, value = token[:2], token[2:]
    return f"{category}#{hashlib.sha1(value.encode()).hexdigest()[:20]}"


def parse_token(token: str) -> Tuple[TokenCategory, str]:
    """Split a selection token into its category and raw identifier."""
    for category in TokenCategory:
        if token.startswith(category.value):
            value = token[len(category.value):]
            if not value:
                raise InvalidSelectionError(token, INVALID_FORMAT_REPLIES[category])
            return category, value
    raise InvalidSelectionError(token)


# -----------------------------------------------------------------------------
# Dialog Engine
# -----------------------------------------------------------------------------
class DialogEngine:
    """
    Per-conversation composition dialogs for the single permitted operator.

    Dialog states live in an explicit conversation id -> DialogState map and
    are created on demand in IDLE. Abandoned dialogs stay parked in their
    last state until the operator starts another flow.
    """

    def __init__(self, registry: TaskRegistry, operator_id: ConversationId):
        self._registry = registry
        self._operator_id = operator_id
        self._states: Dict[ConversationId, DialogState] = {}
        self._aliases: Dict[str, str] = {}

    # -------------------------------------------------------------------------
    # State Management
    # -------------------------------------------------------------------------

    def is_permitted(self, conversation_id: ConversationId) -> bool:
        return conversation_id == self._operator_id

    def get_state(self, conversation_id: ConversationId) -> DialogState:
        return self._states.setdefault(conversation_id, IDLE)

    def _set_state(self, conversation_id: ConversationId, state: DialogState) -> None:
        previous = self._states.get(conversation_id, IDLE)
        self._states[conversation_id] = state
        if previous != state:
            logger.info(f"Dialog {conversation_id}: {previous.step.value} -> {state.step.value}")

    def reset(self, conversation_id: ConversationId) -> None:
        self._set_state(conversation_id, IDLE)

    # -------------------------------------------------------------------------
    # Choice Lists
    # -------------------------------------------------------------------------

    def _choice_token(self, category: TokenCategory, value: str) -> str:
        token = make_token(category, value)
        if len(token.encode()) <= MAX_TOKEN_BYTES:
            return token
        alias = short_token(token)
        self._aliases[alias] = token
        return alias

    def _device_choices(self) -> List[Choice]:
        return [
            Choice(label=d.display_name, token=self._choice_token(TokenCategory.DEVICE, d.id))
            for d in self._registry.list_devices()
        ]

    def _session_choices(self, device_id: str) -> List[Choice]:
        return [
            Choice(label=sid, token=self._choice_token(TokenCategory.SESSION, sid))
            for sid in self._registry.list_session_ids(device_id)
        ]

    @staticmethod
    def _task_kind_choices() -> List[Choice]:
        return [
            Choice(label=kind.value, token=make_token(TokenCategory.TASK_KIND, kind.value))
            for kind in TaskKind.catalog()
        ]

    # -------------------------------------------------------------------------
    # Turn Entry Points
    # -------------------------------------------------------------------------

    def handle_text(self, conversation_id: ConversationId, text: str) -> Optional[BotReply]:
        """Handle a free-text turn. Returns None for non-permitted senders."""
        if not self.is_permitted(conversation_id):
            logger.warning(f"Dropped message from non-permitted chat {conversation_id}")
            return None

        parsed = parse_command(text.strip())
        if not parsed:
            return BotReply("Unknown command. Use /help to see available commands.")
        return self.handle_command(conversation_id, parsed)

    def handle_command(
        self,
        conversation_id: ConversationId,
        parsed: ParsedCommand,
    ) -> Optional[BotReply]:
        if not self.is_permitted(conversation_id):
            logger.warning(f"Dropped /{parsed.command.value} from non-permitted chat {conversation_id}")
            return None

        logger.info(f"Processing /{parsed.command.value} from chat {conversation_id}")

        handlers: Dict[BotCommand, Callable[[], BotReply]] = {
            BotCommand.START: self.handle_help,
            BotCommand.HELP: self.handle_help,
            BotCommand.APPEND_TASK: lambda: self.start_append_task(conversation_id),
            BotCommand.GET_CURRENT_TASK: lambda: self.start_get_current_task(conversation_id),
            BotCommand.SCREENSHOT_ALL: self.screenshot_all,
            BotCommand.RENAME_DEVICE: lambda: self.rename_device(parsed.args),
            BotCommand.DEVICES: self.list_devices,
        }
        return handlers[parsed.command]()

    def handle_selection(self, conversation_id: ConversationId, token: str) -> Optional[BotReply]:
        """
        Handle a selection token from an inline choice.

        Invalid selections, invalid states and unknown devices/sessions are
        answered with a one-line reply and leave the dialog state unchanged.
        """
        if not self.is_permitted(conversation_id):
            logger.warning(f"Dropped selection from non-permitted chat {conversation_id}")
            return None

        state = self.get_state(conversation_id)
        try:
            return self._advance(conversation_id, state, token)
        except InvalidStateError as e:
            logger.info(f"Dialog {conversation_id}: token {token!r} rejected in {state.step.value}")
            return BotReply(e.message)
        except InvalidSelectionError as e:
            logger.info(f"Dialog {conversation_id}: invalid selection {token!r}: {e.message}")
            return BotReply(e.message)
        except (DeviceNotFoundError, SessionNotFoundError) as e:
            logger.info(f"Dialog {conversation_id}: {e.message}")
            return BotReply(f"Invalid selection: {e.message}")

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _advance(self, conversation_id: ConversationId, state: DialogState, token: str) -> BotReply:
        expected = EXPECTED_CATEGORY.get(state.step)
        try:
            category, value = parse_token(self._aliases.get(token, token))
        except InvalidSelectionError:
            if expected is None:
                raise
            raise InvalidSelectionError(token, INVALID_FORMAT_REPLIES[expected]) from None

        if category != expected:
            raise InvalidStateError(state.step.value, token)

        if category == TokenCategory.DEVICE:
            return self._receive_device(conversation_id, state, value)
        if category == TokenCategory.SESSION:
            return self._receive_session(conversation_id, state, value)
        return self._receive_task_kind(conversation_id, state, value)

    def _receive_device(self, conversation_id: ConversationId, state: DialogState, device_id: str) -> BotReply:
        choices = self._session_choices(device_id)

        if state.step == DialogStep.AWAITING_DEVICE_FOR_HEARTBEAT:
            next_step = DialogStep.AWAITING_SESSION_FOR_HEARTBEAT
        else:
            next_step = DialogStep.AWAITING_SESSION

        self._set_state(conversation_id, DialogState(step=next_step, device_id=device_id))
        return BotReply("Select user", choices)

    def _receive_session(self, conversation_id: ConversationId, state: DialogState, session_id: str) -> BotReply:
        device_id = state.device_id
        if session_id not in self._registry.list_session_ids(device_id):
            raise SessionNotFoundError(device_id, session_id)

        if state.step == DialogStep.AWAITING_SESSION_FOR_HEARTBEAT:
            self._registry.enqueue(device_id, session_id, TaskKind.HEART_BEAT)
            self.reset(conversation_id)
            return self._heartbeat_requested(device_id, session_id)

        self._set_state(conversation_id, replace(
            state, step=DialogStep.AWAITING_TASK_KIND, session_id=session_id
        ))
        return BotReply("Select task", self._task_kind_choices())

    def _receive_task_kind(self, conversation_id: ConversationId, state: DialogState, value: str) -> BotReply:
        kind = TaskKind.parse(value)
        self._registry.enqueue(state.device_id, state.session_id, kind)
        self.reset(conversation_id)
        return BotReply("Task added")

    def _heartbeat_requested(self, device_id: str, session_id: str) -> BotReply:
        name = self._registry.get_device(device_id).display_name
        return BotReply(
            f"Asked {name}, user {session_id} for its current task. "
            f"The answer arrives with the next report."
        )

    # -------------------------------------------------------------------------
    # Command Handlers
    # -------------------------------------------------------------------------

    def start_append_task(self, conversation_id: ConversationId) -> BotReply:
        """Handle /appendtask."""
        # One device with one user: nothing to ask
        if self._registry.is_single_session:
            single = self._registry.single_device_and_session()
            if single is not None:
                device, session = single
                self._set_state(conversation_id, DialogState(
                    step=DialogStep.AWAITING_TASK_KIND,
                    device_id=device.id,
                    session_id=session.id,
                ))
                return BotReply(
                    f"Select task for device {device.display_name}, user {session.id}",
                    self._task_kind_choices(),
                )

        return self._ask_for_device(conversation_id, DialogStep.AWAITING_DEVICE)

    def start_get_current_task(self, conversation_id: ConversationId) -> BotReply:
        """Handle /getcurrenttask."""
        if self._registry.is_single_session:
            single = self._registry.single_device_and_session()
            if single is not None:
                device, session = single
                self._registry.enqueue(device.id, session.id, TaskKind.HEART_BEAT)
                self.reset(conversation_id)
                return self._heartbeat_requested(device.id, session.id)

        return self._ask_for_device(conversation_id, DialogStep.AWAITING_DEVICE_FOR_HEARTBEAT)

    def _ask_for_device(self, conversation_id: ConversationId, step: DialogStep) -> BotReply:
        choices = self._device_choices()
        if not choices:
            self.reset(conversation_id)
            return BotReply("No devices have polled yet.")

        self._set_state(conversation_id, DialogState(step=step))
        return BotReply("Select device:", choices)

    def screenshot_all(self) -> BotReply:
        """Handle /screenshotall: one CaptureImageNow per known session."""
        tasks = self._registry.enqueue_all(TaskKind.CAPTURE_IMAGE_NOW)
        if not tasks:
            return BotReply("No devices connected.")
        logger.info(f"Broadcast screenshot to {len(tasks)} session(s)")
        return BotReply("Tasks sent.")

    def rename_device(self, args: List[str]) -> BotReply:
        """Handle /renamedevice <device_id> <new name>."""
        if len(args) < 2:
            return BotReply("Usage: /renamedevice <device_id> <new name>")

        device_id, new_name = args[0], " ".join(args[1:])
        try:
            self._registry.rename_device(device_id, new_name)
        except DeviceNotFoundError as e:
            return BotReply(e.message)
        return BotReply(f"Device {device_id} renamed to {new_name}")

    def list_devices(self) -> BotReply:
        """Handle /devices."""
        devices = self._registry.list_devices()
        if not devices:
            return BotReply("No devices have polled yet.")

        lines = []
        for device in devices:
            lines.append(f"{device.display_name} ({device.id})")
            for session_id, pending in device.pending.items():
                lines.append(f"  - {session_id}: {pending} pending")
        return BotReply("\n".join(lines))

    @staticmethod
    def handle_help() -> BotReply:
        """Handle /start and /help."""
        lines = ["MAA remote control", ""]
        lines.extend(f"/{cmd.value} - {desc}" for cmd, desc in COMMAND_DESCRIPTIONS.items())
        return BotReply("\n".join(lines))

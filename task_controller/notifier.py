"""
Operator notification port.

The status resolver depends on this Protocol instead of a concrete chat
client; the Telegram binding in operator_bot provides the implementation.
"""

from typing import Optional, Protocol


class OperatorNotifier(Protocol):
    """How the controller sends text and screenshots to the operator."""

    async def send_text(self, text: str) -> None: ...

    async def send_photo(self, photo: bytes, caption: Optional[str] = None) -> None: ...

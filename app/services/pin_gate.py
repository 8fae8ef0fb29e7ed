"""
Management PIN gate

The PIN prompt is an explicit request/response channel: the caller awaits a
future, and whatever completes the prompt (the UI modal, a test, a CLI)
resolves it with True/False.
"""
import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)

READ_ONLY_MESSAGE = "Modo solo lectura activo. Cambia a ingreso de gerencia para editar."
PIN_REQUIRED_MESSAGE = "PIN de gerencia requerido."


class AccessDeniedError(Exception):
    """Raised when a protected action cannot obtain management access"""


class PinPromptChannel:
    """
    Single-slot channel between whoever needs a PIN and the prompt.

    Concurrent requests share the pending future, so one prompt answers all
    of them.
    """

    def __init__(self):
        self._pending: Optional[asyncio.Future] = None

    @property
    def is_open(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def request(self) -> bool:
        if not self.is_open:
            self._pending = asyncio.get_running_loop().create_future()
            logger.debug("PIN prompt opened")
        return await self._pending

    def resolve(self, granted: bool) -> None:
        if self.is_open:
            self._pending.set_result(bool(granted))
        self._pending = None

    def dismiss(self) -> None:
        self.resolve(False)


class ManagementAccess:
    """
    Tracks whether the current user holds a validated management session.

    Args:
        channel: Where PIN prompts are sent
        read_only: Read-only mode never prompts and refuses every protected action
    """

    def __init__(self, channel: Optional[PinPromptChannel] = None, read_only: bool = False):
        self.channel = channel or PinPromptChannel()
        self.read_only = read_only
        self.active = False

    async def ensure(self) -> bool:
        if self.read_only:
            raise AccessDeniedError(READ_ONLY_MESSAGE)
        if self.active:
            return True
        granted = await self.channel.request()
        self.active = granted
        return granted

    async def reprompt(self) -> bool:
        """Drop the current session and ask for the PIN again"""
        self.active = False
        granted = await self.channel.request()
        self.active = granted
        return granted

    def reset(self) -> None:
        self.active = False
        if self.channel.is_open:
            self.channel.dismiss()

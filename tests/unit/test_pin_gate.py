"""
Unit tests for the management PIN gate
"""
import asyncio

import pytest

from app.services.pin_gate import READ_ONLY_MESSAGE, AccessDeniedError, ManagementAccess, PinPromptChannel


class TestPinPromptChannel:
    """Request/response channel"""

    async def test_concurrent_requests_share_one_prompt(self):
        channel = PinPromptChannel()
        first = asyncio.ensure_future(channel.request())
        second = asyncio.ensure_future(channel.request())
        await asyncio.sleep(0)

        assert channel.is_open
        channel.resolve(True)

        assert await first is True
        assert await second is True
        assert not channel.is_open

    async def test_dismiss_answers_false(self):
        channel = PinPromptChannel()
        pending = asyncio.ensure_future(channel.request())
        await asyncio.sleep(0)
        channel.dismiss()
        assert await pending is False

    def test_resolve_without_prompt_is_noop(self):
        channel = PinPromptChannel()
        channel.resolve(True)
        assert not channel.is_open


class TestManagementAccess:
    """Session state on top of the channel"""

    async def test_granted_session_is_reused(self):
        access = ManagementAccess()
        pending = asyncio.ensure_future(access.ensure())
        await asyncio.sleep(0)
        access.channel.resolve(True)

        assert await pending is True
        assert access.active is True
        # No prompt needed the second time
        assert await access.ensure() is True
        assert not access.channel.is_open

    async def test_denied_prompt_leaves_access_inactive(self):
        access = ManagementAccess()
        pending = asyncio.ensure_future(access.ensure())
        await asyncio.sleep(0)
        access.channel.dismiss()
        assert await pending is False
        assert access.active is False

    async def test_read_only_never_prompts(self):
        access = ManagementAccess(read_only=True)
        with pytest.raises(AccessDeniedError, match="solo lectura"):
            await access.ensure()
        assert READ_ONLY_MESSAGE.startswith("Modo solo lectura")
        assert not access.channel.is_open

    async def test_reset_dismisses_open_prompt(self):
        access = ManagementAccess()
        access.active = True
        pending = asyncio.ensure_future(access.reprompt())
        await asyncio.sleep(0)
        access.reset()
        assert await pending is False
        assert access.active is False

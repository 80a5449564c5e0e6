"""Tests for the AI call archive."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from studymind.storage.raw import archive_ai_conversation


class TestArchiveAiConversation:
    @pytest.mark.asyncio
    async def test_written_outside_caller_transaction(self):
        caller = AsyncMock()
        caller.bind = MagicMock(name="engine")

        archive = MagicMock()
        archive.add = MagicMock()
        archive.flush = AsyncMock()
        archive.commit = AsyncMock()
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=archive)
        context.__aexit__ = AsyncMock(return_value=False)

        with patch("studymind.storage.raw.AsyncSession", return_value=context) as factory:
            conv = await archive_ai_conversation(
                caller,
                session_type="plan_content",
                model="m",
                request_messages=[{"role": "user", "content": "make a folder"}],
                response_content={"raw": "{}"},
                chat_session_uid="s-1",
            )

        factory.assert_called_once_with(caller.bind, expire_on_commit=False)
        archive.add.assert_called_once_with(conv)
        archive.commit.assert_awaited_once()
        caller.add.assert_not_called()
        caller.commit.assert_not_awaited()
        assert conv.session_type == "plan_content"
        assert conv.chat_session_uid == "s-1"

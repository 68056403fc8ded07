from __future__ import annotations

import asyncio

import pytest

from calls.errors import MediaUnavailableError
from rtc.aiortc_platform import AiortcPlatform
from signaling.messages import IceCandidate


def test_missing_input_device_is_reported_as_media_unavailable(tmp_path):
    platform = AiortcPlatform(
        ice_servers=[],
        input_device=str(tmp_path / "no-such-device.wav"),
        input_format="",
    )

    async def scenario():
        with pytest.raises(MediaUnavailableError) as excinfo:
            await platform.acquire_local_media()
        assert "no-such-device.wav" in excinfo.value.detail

    asyncio.run(scenario())


def test_connection_ignores_end_of_candidates_and_closes_once():
    platform = AiortcPlatform(ice_servers=[], input_device="unused", input_format="")
    remote_media: list = []
    failures: list[str] = []
    local_candidates: list = []

    async def scenario():
        connection = platform.create_connection(local_candidates.append, remote_media.append, failures.append)
        assert connection._on_local_candidate == local_candidates.append
        await connection.add_ice_candidate(IceCandidate(candidate=""))
        await connection.close()
        await connection.close()

    asyncio.run(scenario())
    assert remote_media == []
    assert local_candidates == []
    # A local close is not a lost connection.
    assert failures == []

import asyncio

import pytest

from sttbridge.bridge import LifecycleController, OutboundForwarder
from sttbridge.internal_core.contracts import ProviderConfig, TranscriptEvent
from sttbridge.stt import MockSTTProvider


class _StopOnEvent(LifecycleController):
    """Fires the stop signal in the same step that hands back a provider event."""

    def __init__(self, cause: str) -> None:
        super().__init__(idle_timeout_sec=5.0, shutdown_grace_sec=0.2)
        self._stop_cause = cause

    async def guard(self, awaitable):
        result = await super().guard(awaitable)
        if isinstance(result, TranscriptEvent):
            self.request_stop(self._stop_cause)
        return result


async def _run_outbound(cause: str, make_transport):
    provider = MockSTTProvider(script=[{"transcript": "held", "isFinal": True}, {"transcript": "next"}])
    await provider.connect(ProviderConfig())
    transport = make_transport()
    progress = []
    outbound = OutboundForwarder(
        transport, provider, _StopOnEvent(cause), on_progress=lambda: progress.append(1)
    )
    await asyncio.wait_for(outbound.run(), timeout=1.0)
    await provider.close()
    return outbound, transport, progress


@pytest.mark.asyncio
@pytest.mark.parametrize("cause", ["timeout", "provider_closed", "shutdown"])
async def test_event_in_hand_is_delivered_after_stop(cause, make_transport) -> None:
    outbound, transport, progress = await _run_outbound(cause, make_transport)

    assert transport.sent == [{"transcript": "held", "isFinal": True}]
    assert outbound.events_delivered == 1
    assert outbound.utterances_closed == 1
    assert progress == [1]


@pytest.mark.asyncio
@pytest.mark.parametrize("cause", ["client_closed", "client_gone"])
async def test_event_in_hand_is_discarded_when_client_is_unreachable(cause, make_transport) -> None:
    outbound, transport, progress = await _run_outbound(cause, make_transport)

    assert transport.sent == []
    assert outbound.events_delivered == 0
    assert progress == []

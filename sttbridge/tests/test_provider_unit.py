import asyncio
import base64
import json
from dataclasses import replace

import pytest

from sttbridge.internal_core.config import load_config
from sttbridge.internal_core.contracts import AudioChunk, ProviderConfig
from sttbridge.internal_core.errors import BackpressureExceeded, ConnectError, NotConnected
from sttbridge.stt import MockSTTProvider, SarvamProvider, build_provider, parse_transcript_payload
from sttbridge.stt.sarvam import build_stream_url, encode_audio_message


class FakeUpstream:
    def __init__(self, messages=(), *, block_send: bool = False) -> None:
        self.sent: list = []
        self.closed = False
        self._messages = list(messages)
        self._release = asyncio.Event()
        if not block_send:
            self._release.set()

    async def send(self, data) -> None:
        await self._release.wait()
        self.sent.append(data)

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for message in self._messages:
            yield message

    async def close(self) -> None:
        self.closed = True


def _connector_for(upstream: FakeUpstream, calls: list):
    async def _connect(url, **kwargs):
        calls.append((url, kwargs))
        return upstream

    return _connect


def _chunk(seq: int, payload: bytes = b"\x00\x01\x02\x03") -> AudioChunk:
    return AudioChunk(seq=seq, payload=payload, captured_at=0.0)


def test_parse_transcript_payload_flat_and_enveloped_forms() -> None:
    flat = parse_transcript_payload('{"transcript": "hello", "isFinal": false}')
    nested = parse_transcript_payload(
        json.dumps({"type": "data", "data": {"transcript": "hello world", "is_final": True, "confidence": 0.8}})
    )
    assert flat is not None and flat.transcript == "hello" and flat.is_final is False
    assert nested is not None and nested.transcript == "hello world"
    assert nested.is_final is True
    assert nested.confidence == 0.8


@pytest.mark.parametrize(
    "raw",
    [
        "not json at all",
        b"\x00\xff\x10",
        "[1, 2, 3]",
        '{"type": "events", "data": {"signal_type": "START_SPEECH"}}',
        '{"type": "heartbeat"}',
        '{"transcript": 42}',
        None,
    ],
)
def test_parse_transcript_payload_drops_unrecognised_frames(raw) -> None:
    assert parse_transcript_payload(raw) is None


def test_parse_transcript_payload_ignores_out_of_range_confidence() -> None:
    event = parse_transcript_payload({"transcript": "x", "confidence": 7, "final": True})
    assert event is not None
    assert event.confidence is None
    assert event.is_final is True


def test_build_provider_selects_by_name() -> None:
    cfg = load_config()
    assert isinstance(build_provider(replace(cfg, STT_PROVIDER="mock")), MockSTTProvider)
    assert isinstance(
        build_provider(replace(cfg, STT_PROVIDER="sarvam", SARVAM_API_KEY="k")), SarvamProvider
    )
    with pytest.raises(ValueError, match="Unknown STT_PROVIDER"):
        build_provider(replace(cfg, STT_PROVIDER="whisper"))


def test_build_stream_url_carries_session_config() -> None:
    config = ProviderConfig(language_code="hi-IN", sample_rate=8000, vad_signals=True)
    url = build_stream_url("wss://example.test/stream", config)
    assert url.startswith("wss://example.test/stream?")
    assert "language-code=hi-IN" in url
    assert "sample_rate=8000" in url
    assert "vad_signals=true" in url
    assert "high_vad_sensitivity=false" in url


def test_encode_audio_message_respects_framing() -> None:
    chunk = _chunk(0, b"\x10\x20\x30")
    assert encode_audio_message(chunk, ProviderConfig(audio_framing="raw")) == b"\x10\x20\x30"
    wrapped = json.loads(encode_audio_message(chunk, ProviderConfig(audio_framing="base64_json")))
    assert base64.b64decode(wrapped["audio"]["data"]) == b"\x10\x20\x30"
    assert wrapped["audio"]["sample_rate"] == 16000


@pytest.mark.asyncio
async def test_sarvam_connect_sends_auth_header_and_flushes_on_close() -> None:
    upstream = FakeUpstream()
    calls: list = []
    provider = SarvamProvider("secret", url="wss://example.test/stream", connector=_connector_for(upstream, calls))

    await provider.connect(ProviderConfig(audio_framing="raw"))
    for seq in range(3):
        await provider.send_audio(_chunk(seq, bytes([seq]) * 4))
    await provider.close()

    assert calls[0][1]["additional_headers"] == {"api-subscription-key": "secret"}
    assert upstream.sent == [b"\x00" * 4, b"\x01" * 4, b"\x02" * 4]
    assert upstream.closed is True
    with pytest.raises(NotConnected):
        await provider.send_audio(_chunk(3))


@pytest.mark.asyncio
async def test_sarvam_connect_failure_is_connect_error() -> None:
    async def _refuse(url, **kwargs):
        raise OSError("connection refused")

    provider = SarvamProvider("secret", url="wss://example.test/stream", connector=_refuse)
    with pytest.raises(ConnectError, match="connection refused"):
        await provider.connect(ProviderConfig())
    await provider.close()


@pytest.mark.asyncio
async def test_sarvam_without_api_key_never_dials() -> None:
    calls: list = []
    provider = SarvamProvider("", url="wss://example.test/stream", connector=_connector_for(FakeUpstream(), calls))
    with pytest.raises(ConnectError, match="SARVAM_API_KEY"):
        await provider.connect(ProviderConfig())
    assert calls == []


@pytest.mark.asyncio
async def test_sarvam_send_before_connect_is_not_connected() -> None:
    provider = SarvamProvider("secret", url="wss://example.test/stream")
    with pytest.raises(NotConnected):
        await provider.send_audio(_chunk(0))


@pytest.mark.asyncio
async def test_sarvam_bounded_queue_raises_backpressure() -> None:
    upstream = FakeUpstream(block_send=True)
    provider = SarvamProvider(
        "secret",
        url="wss://example.test/stream",
        queue_size=1,
        send_timeout_sec=0.05,
        flush_timeout_sec=0.1,
        connector=_connector_for(upstream, []),
    )
    await provider.connect(ProviderConfig())

    await provider.send_audio(_chunk(0))
    await asyncio.sleep(0)  # writer picks up chunk 0 and blocks upstream
    await provider.send_audio(_chunk(1))
    with pytest.raises(BackpressureExceeded):
        await provider.send_audio(_chunk(2))

    await asyncio.wait_for(provider.close(), timeout=1.0)
    assert upstream.closed is True


@pytest.mark.asyncio
async def test_sarvam_events_preserve_order_and_drop_malformed() -> None:
    upstream = FakeUpstream(
        messages=[
            '{"transcript": "hello", "isFinal": false}',
            "garbage",
            '{"type": "events", "data": {"signal_type": "END_SPEECH"}}',
            '{"type": "data", "data": {"transcript": "hello world", "is_final": true}}',
        ]
    )
    provider = SarvamProvider("secret", url="wss://example.test/stream", connector=_connector_for(upstream, []))
    await provider.connect(ProviderConfig())

    received = [event async for event in provider.events()]
    await provider.close()

    assert [(e.transcript, e.is_final) for e in received] == [("hello", False), ("hello world", True)]
    assert provider.dropped_payloads == 2
    assert provider.connected is False


@pytest.mark.asyncio
async def test_sarvam_close_is_idempotent_and_connection_not_reusable() -> None:
    upstream = FakeUpstream()
    provider = SarvamProvider("secret", url="wss://example.test/stream", connector=_connector_for(upstream, []))
    await provider.connect(ProviderConfig())
    await provider.close()
    await provider.close()
    with pytest.raises(ConnectError):
        await provider.connect(ProviderConfig())


@pytest.mark.asyncio
async def test_mock_provider_releases_script_after_threshold() -> None:
    provider = MockSTTProvider(
        script=[{"transcript": "a", "isFinal": True}, "junk"],
        emit_after_chunks=2,
        end_after_script=True,
    )
    await provider.connect(ProviderConfig())
    await provider.send_audio(_chunk(0))
    await provider.send_audio(_chunk(1))

    received = [event.transcript async for event in provider.events()]
    assert received == ["a"]
    assert provider.dropped_payloads == 1
    await provider.close()
    with pytest.raises(NotConnected):
        await provider.send_audio(_chunk(2))


@pytest.mark.asyncio
async def test_sarvam_close_during_handshake_discards_new_socket() -> None:
    upstream = FakeUpstream()

    async def slow_connect(url, **kwargs):
        _ = (url, kwargs)
        await asyncio.sleep(0.05)
        return upstream

    provider = SarvamProvider("secret", url="wss://example.test/stream", connector=slow_connect)
    connecting = asyncio.create_task(provider.connect(ProviderConfig()))
    await asyncio.sleep(0.01)
    await provider.close()

    with pytest.raises(ConnectError, match="closed during connect"):
        await connecting
    assert upstream.closed is True
    assert provider.connected is False
    with pytest.raises(NotConnected):
        await provider.send_audio(_chunk(0))

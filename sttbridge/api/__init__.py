"""
API boundary for the transcription bridge.

Design intent:
- Expose one WebSocket stream endpoint plus thin status/summary endpoints.
- Keep request validation explicit and failure modes predictable.
- Hand streaming connections to the bridge without embedding relay logic.
"""

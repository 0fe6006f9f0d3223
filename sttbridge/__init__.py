"""
sttbridge package.

Design intent:
- Relay live client audio to a remote speech-recognition provider and
  transcript events back, one isolated session per connection.
- Keep provider wire formats (stt), relay/lifecycle (bridge) and the HTTP
  surface (api) independent from each other.
"""

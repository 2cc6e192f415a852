"""
Handlers for telephony media-stream frames.

- session_handlers: connected, start and stop
- stream_handlers: media (caller audio)

Every handler takes the decoded frame and the TelephonySession bound to the
socket the frame arrived on.
"""

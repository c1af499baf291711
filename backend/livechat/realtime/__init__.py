"""
Real-time module for Socket.IO based delivery of form events.
"""
from livechat.realtime.socket import sio, emit_form_request, emit_form_submitted

__all__ = ["sio", "emit_form_request", "emit_form_submitted"]

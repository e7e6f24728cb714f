"""Canonical MQTT topic constants shared with the messaging gateway sidecar.

All components MUST use these constants instead of hardcoding topic strings.
Topic namespace: supportbot/
"""

# Gateway -> bot
GATEWAY_MESSAGE = "supportbot/gateway/message"
GATEWAY_STATUS = "supportbot/gateway/status"

# Bot -> gateway
GATEWAY_SEND = "supportbot/gateway/send"
GATEWAY_CONTROL = "supportbot/gateway/control"

# Status event names carried on GATEWAY_STATUS
EVENT_READY = "ready"
EVENT_DISCONNECTED = "disconnected"
EVENT_AUTH_FAILURE = "auth_failure"
EVENT_QR = "qr"
EVENT_LOADING = "loading"

# Disconnect reasons that mean the session was ended on purpose
INTENTIONAL_DISCONNECT_REASONS = frozenset({"LOGOUT", "NAVIGATION"})

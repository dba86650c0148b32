# sigrelay wire constants (event names, map keys, close codes)

# Frame keys
K_EVENT = "event"
K_FROM = "from"
K_TO = "to"

# Signaling kinds (client -> server -> client, routed one-to-one)
E_CALL_REQUEST = "call-request"
E_CALL_ACCEPT = "call-accept"
E_CALL_REJECT = "call-reject"
E_CALL_END = "call-end"
E_NEGOTIATION_OFFER = "negotiation-offer"
E_NEGOTIATION_ANSWER = "negotiation-answer"
E_CONNECTIVITY_CANDIDATE = "connectivity-candidate"

# Server -> client
E_ONLINE_USERS = "online-users"
E_UNREACHABLE = "unreachable"
E_ERROR = "error"

# online-users body
B_IDENTITIES = "identities"

# unreachable body
B_IDENTITY = "identity"
B_KIND = "kind"

# error body
B_REASON = "reason"

# Kind-specific payload fields
F_CALL_TYPE = "type"
F_CALL_ID = "callId"
F_OFFER = "offer"
F_ANSWER = "answer"
F_CANDIDATE = "candidate"

DEFAULT_CALL_TYPE = "video"

# Event names used by the original browser client. Accepted inbound only.
LEGACY_EVENT_ALIASES = {
    "videoCallRequest": E_CALL_REQUEST,
    "videoCallAccepted": E_CALL_ACCEPT,
    "videoCallRejected": E_CALL_REJECT,
    "videoCallEnded": E_CALL_END,
    "offer": E_NEGOTIATION_OFFER,
    "answer": E_NEGOTIATION_ANSWER,
    "iceCandidate": E_CONNECTIVITY_CANDIDATE,
}

# Handshake query parameters
Q_ENCODING = "encoding"
ENCODING_JSON = "json"
ENCODING_CBOR = "cbor"

# WebSocket close codes
CLOSE_POLICY_VIOLATION = 1008

REJECT_MISSING_IDENTITY = "missing identity"
REJECT_INVALID_IDENTITY = "invalid identity"
REJECT_BANNED = "banned"

IDENTITY_MAX_CHARS = 128

# Component loggers, each named sigrelay.<component>.
LOG_COMPONENTS = (
    "relay",
    "registry",
    "router",
    "presence",
    "lifecycle",
    "connection",
    "trust",
    "server",
    "client",
)

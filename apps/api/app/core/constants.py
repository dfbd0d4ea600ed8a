from enum import Enum


class DatabasePool:
    MIN_SIZE = 2
    MAX_SIZE = 20


class RedisKeys:
    SESSION_MEMORY = "session_memory:{session_id}"


class ClientEvents:
    """Event names carried in the WebSocket envelope ``{"event", "data"}``."""

    SEND_MESSAGE = "sendMessage"
    SESSION_CREATED = "sessionCreated"
    MESSAGE_CHUNK = "messageChunk"
    HASHTAGS_UPDATE = "hashtagsUpdate"
    STREAMING_HASHTAGS = "streamingHashtags"
    ERROR = "error"


class MessageOrigin(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class TagDefaults:
    FALLBACK = "conversation"
    # Used when extraction itself blows up
    EXTRACTION_FAILURE: tuple[str, ...] = ("#chat", "#conversation")
    GENERIC_POOL: tuple[str, ...] = ("#discussion", "#topic", "#conversation", "#query")
    SEED_SYNONYMS: tuple[tuple[str, str], ...] = (
        ("js", "javascript"),
        ("py", "python"),
        ("ai", "artificial-intelligence"),
        ("ml", "machine-learning"),
        ("db", "database"),
        ("react", "reactjs"),
        ("node", "nodejs"),
        ("vue", "vuejs"),
    )

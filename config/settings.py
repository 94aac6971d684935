from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Global configuration for the persuasion chat client."""

    ANTHROPIC_API_KEY: str = ""

    # Task-based models
    MODEL_CHAT: str = "claude-sonnet-4-20250514"          # Dialogue and memo turns
    MODEL_SUGGESTIONS: str = "claude-haiku-4-5-20251001"  # Follow-up suggestions
    MODEL_TITLE: str = "claude-haiku-4-5-20251001"        # Auto-title
    MODEL_TANGENT: str = "claude-sonnet-4-20250514"       # /react tangent agent and image prompts
    MAX_RESPONSE_TOKENS: int = 1024

    DB_PATH: str = "data/chats.db"
    LOG_PATH: str = "data/persuasion-chat.log"

    # Retrieval augmentation (grounding snippets from a vector collection)
    RETRIEVAL_ENABLED: bool = True
    CHROMA_PATH: str = "data/chroma"
    RETRIEVAL_COLLECTION: str = "conversation-search-assistant"
    RETRIEVAL_TOP_K: int = 10
    RETRIEVAL_SNIPPET_SIZE: int = 1280
    RETRIEVAL_MIN_SCORE: float = 0.3

    # Speech synthesis of the opening line
    ELEVENLABS_API_KEY: str = ""
    ELEVENLABS_VOICE_ID: str = "21m00Tcm4TlvDq8ikWAM"
    ELEVENLABS_MODEL_ID: str = "eleven_multilingual_v2"
    ELEVENLABS_AUTO_SPEAK: str = "off"  # "off" | "firstLine"
    SPEAK_MIN_CUT: int = 100
    SPEAK_MAX_CUT: int = 400

    DEFAULT_CHAT_MODE: str = "immediate"
    AUTO_TITLE: bool = True

    # Shared links (exported conversations) expire after 30 days by default
    SHARE_EXPIRES_SECONDS: int = 60 * 60 * 24 * 30

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


DEEPGRAM_API_KEY = os.getenv("DEEPGRAM_API_KEY", "")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")

# LLM configuration
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "auto")
LLM_TOOLKIT_URL = os.getenv("LLM_TOOLKIT_URL", "")
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
LLM_DEFAULT_TIER = os.getenv("LLM_DEFAULT_TIER", "fast")
LLM_MODEL_FAST = os.getenv("LLM_MODEL_FAST", "")
LLM_MODEL_STANDARD = os.getenv("LLM_MODEL_STANDARD", "")
LLM_MODEL_HIGH = os.getenv("LLM_MODEL_HIGH", "")

# Demo/Debug mode (explicit)
DUMMY_MODE = _flag("DUMMY_MODE")

DATABASE_PATH = os.getenv("DATABASE_PATH", "beacon.db")

# Deepgram live transcription
DEEPGRAM_MODEL = os.getenv("DEEPGRAM_MODEL", "nova-2")
DEEPGRAM_LANGUAGE = os.getenv("DEEPGRAM_LANGUAGE", "en-US")
DEEPGRAM_UTTERANCE_END_MS = int(os.getenv("DEEPGRAM_UTTERANCE_END_MS", "1000"))
# How long stop waits for the results Deepgram flushes after CloseStream
DEEPGRAM_CLOSE_TIMEOUT_SECONDS = float(os.getenv("DEEPGRAM_CLOSE_TIMEOUT_SECONDS", "5"))

# Recording pipeline
PAUSE_MARKER_SECONDS = float(os.getenv("PAUSE_MARKER_SECONDS", "3"))
LEGACY_PAUSE_MARKER_SECONDS = float(os.getenv("LEGACY_PAUSE_MARKER_SECONDS", "5"))
ACTION_ITEM_INTERVAL_SECONDS = float(os.getenv("ACTION_ITEM_INTERVAL_SECONDS", "10"))
TRANSCRIPT_QUEUE_SIZE = int(os.getenv("TRANSCRIPT_QUEUE_SIZE", "256"))
PRESERVE_COMPLETED_ITEMS = _flag("PRESERVE_COMPLETED_ITEMS", "true")


@dataclass(frozen=True)
class PipelineConfig:
    """Tunables for one recording session.

    Built from the environment once and handed to ``RecordingSession`` so the
    pipeline itself never reads module globals.
    """

    pause_marker_seconds: float = 3.0
    arm_pause_on_final: bool = False
    action_item_interval: float = 10.0
    queue_size: int = 256
    preserve_completed_items: bool = True

    @classmethod
    def from_env(cls, legacy: bool = False) -> "PipelineConfig":
        return cls(
            pause_marker_seconds=LEGACY_PAUSE_MARKER_SECONDS if legacy else PAUSE_MARKER_SECONDS,
            arm_pause_on_final=legacy,
            action_item_interval=ACTION_ITEM_INTERVAL_SECONDS,
            queue_size=TRANSCRIPT_QUEUE_SIZE,
            preserve_completed_items=PRESERVE_COMPLETED_ITEMS,
        )

"""Engine configuration constants and the environment-backed Settings object.

File names of the per-project blobs and the outline batching tables live
here so the pipelines, the store and the tests agree on them.
"""
from __future__ import annotations

from dataclasses import dataclass

from .env import env_flag, env_float, env_int

# Per-project blob names
PROJECT_FILE = "project.json"
CHAPTER_DRAFT_FILE = "chapter_draft.json"
MEMORY_FILE = "memory.json"
SUMMARIES_FILE = "chapter_summaries.json"
WORKFLOW_FILE = "workflow_items.json"
DRAFTS_DIR = "drafts"

# Outline limits
MAX_CHAPTERS = 300
MIN_DEFAULT_CHAPTERS = 8
INITIAL_DEFAULT_CHAPTERS = 20
MAX_FILL_BATCH = 20

# (upper bound of batch size, max tokens); anything larger gets the last value
BATCH_TOKEN_BUDGETS = [
    (6, 1200),
    (10, 1600),
    (14, 2200),
    (20, 3200),
]
BATCH_TOKEN_BUDGET_MAX = 4096

# (upper bound of total chapters, batch size)
BATCH_SIZES = [
    (30, 20),
    (80, 16),
]
BATCH_SIZE_MAX = 12

SUMMARY_MAX_CHARS = 160
SUMMARY_MAX_OPTIONS = 5
WORKFLOW_BRIEF_CHARS = 300

# Command ids carried in CommandRequest.options["command_id"]
COMMAND_FILL_OUTLINE = "fill_outline_next"
COMMAND_EXPAND_SCENE = "expand_scene"

PARSE_FAILED_TEXT = "(Model output could not be parsed; please retry this command.)"
EMPTY_BEATS_TEXT = "(Generation failed: the opening scene came back empty.)"

RECOMMENDED_COMMANDS = [
    {
        "id": "expand_scene",
        "label": "Expand the current chapter",
        "assist_mode": "completion",
        "command": (
            "Using the current chapter outline, write the chapter draft: fill in detail, action and dialogue "
            "without changing established plot, staying consistent with earlier style and facts."
        ),
    },
    {
        "id": "polish_language",
        "label": "Polish language and pacing",
        "assist_mode": "polish",
        "command": (
            "Polish the current scene without changing plot or key information: remove redundancy, smooth "
            "sentences, sharpen imagery and rhythm, and add only the action and dialogue the scene needs."
        ),
    },
    {
        "id": "add_tension",
        "label": "Raise emotional tension",
        "assist_mode": "inspiration",
        "command": (
            "Strengthen the emotional conflict and suspense of the current scene: sharpen opposing motives, "
            "information gaps and hints. Offer 2-3 possible directions as branches."
        ),
    },
]


@dataclass(frozen=True)
class Settings:
    # Fraction of requested chapters that must come back with a title and a
    # summary before a batch is accepted without retrying. Tunable heuristic.
    accept_ratio: float = 0.7
    max_attempts: int = 3
    context_window: int = 6
    log_llm: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        ratio = env_float("SW_OUTLINE_ACCEPT_RATIO", 0.7)
        if not (0.0 < ratio <= 1.0):
            ratio = 0.7
        return cls(
            accept_ratio=ratio,
            max_attempts=env_int("SW_OUTLINE_MAX_ATTEMPTS", 3),
            context_window=env_int("SW_OUTLINE_CONTEXT_WINDOW", 6),
            log_llm=env_flag("SW_LOG_LLM"),
        )

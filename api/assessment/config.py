"""
Configuration Module for the Assessment Engine
Centralizes environment variables, grading settings, and prompt templates.
"""
import os
from typing import Optional
from dotenv import load_dotenv

# --- API Configuration ---
MODEL_NAME = "gemini-2.0-flash"

DEFAULT_GRADER_TIMEOUT_SECONDS = 15.0
DEFAULT_STORE = "memory"


def get_api_key() -> str:
    """
    Validates and returns the Gemini API Key.

    Raises:
        ValueError: If GEMINI_API_KEY is not found in environment.
    """
    # Load environment variables fresh (for testing and reload scenarios)
    load_dotenv()
    api_key = os.getenv("GEMINI_API_KEY")

    if not api_key:
        raise ValueError(
            "GEMINI_API_KEY not found. "
            "Please create a .env file with your API key."
        )
    return api_key


def get_optional_api_key() -> Optional[str]:
    """Returns the Gemini API key, or None when free-text grading runs offline."""
    try:
        return get_api_key()
    except ValueError:
        return None


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def ai_grading_enabled() -> bool:
    """Whether essay answers should be sent to Gemini before the heuristic."""
    load_dotenv()
    return _env_flag("AI_GRADING_ENABLED", True)


def get_grader_timeout() -> float:
    """
    Returns the upper bound (seconds) for a single Gemini grading call.

    Raises:
        ValueError: If GRADER_TIMEOUT_SECONDS is not a positive number.
    """
    load_dotenv()
    raw = os.getenv("GRADER_TIMEOUT_SECONDS")
    if raw is None or not raw.strip():
        return DEFAULT_GRADER_TIMEOUT_SECONDS
    timeout = float(raw)
    if timeout <= 0:
        raise ValueError("GRADER_TIMEOUT_SECONDS must be positive")
    return timeout


def get_store_backend() -> str:
    """Returns the configured attempt store backend ("memory" or "firestore")."""
    load_dotenv()
    backend = (os.getenv("EXAM_STORE") or DEFAULT_STORE).strip().lower()
    if backend not in ("memory", "firestore"):
        raise ValueError(f"Unsupported EXAM_STORE '{backend}'. Allowed: memory, firestore")
    return backend


def get_firebase_cred_path() -> str:
    """
    Returns the path of the Firebase service account file.

    Raises:
        ValueError: If FIREBASE_CRED is not set.
    """
    load_dotenv()
    cred_path = os.getenv("FIREBASE_CRED")
    if not cred_path:
        raise ValueError(
            "FIREBASE_CRED not found. "
            "Point it at your firebase-credentials.json file."
        )
    return cred_path


# --- Prompt Templates ---
PROMPT_TEMPLATES = {
    "grader": """You are grading a short theory answer.
Score an integer from 0 to {max_marks} only.
Guidelines:
- {max_marks} = fully correct and complete
- most of the marks = close, mostly correct with minor gaps
- low marks = partial or vague
- 0 = irrelevant or wrong
Reply with the number only.

Question: {question}
{expected_points}{rubric}Student answer: {student_answer}""",
}


def get_prompt(agent_type: str, **kwargs) -> str:
    """
    Retrieves a formatted prompt template.

    Args:
        agent_type: Type of prompt (currently only "grader").
        **kwargs: Variables to format into the template.

    Returns:
        Formatted prompt string.

    Raises:
        KeyError: If agent_type is not found in templates.
    """
    if agent_type not in PROMPT_TEMPLATES:
        raise KeyError(f"Prompt template '{agent_type}' not found.")

    return PROMPT_TEMPLATES[agent_type].format(**kwargs)

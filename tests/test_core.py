"""
Test Core Configuration & Prompts
Tests config loading from the environment and prompt templating.
"""
import os
from unittest.mock import patch

import pytest

from assessment.config import (
    MODEL_NAME,
    ai_grading_enabled,
    get_api_key,
    get_firebase_cred_path,
    get_grader_timeout,
    get_optional_api_key,
    get_prompt,
    get_store_backend,
)


@pytest.fixture
def clean_env():
    """Empty environment with .env loading disabled."""
    with patch.dict(os.environ, {}, clear=True):
        with patch("assessment.config.load_dotenv"):
            yield


def test_model_name_configured():
    """Verify the model name is set correctly."""
    assert MODEL_NAME == "gemini-2.0-flash"


def test_prompt_integrity_grader():
    """Test that question, answer and bounds are embedded in the grader prompt."""
    prompt = get_prompt(
        "grader",
        max_marks=5,
        question="What does RAM stand for?",
        expected_points="Expected points: Random Access Memory\n",
        rubric="",
        student_answer="random access memory",
    )
    assert "Score an integer from 0 to 5 only." in prompt
    assert "Question: What does RAM stand for?" in prompt
    assert "Expected points: Random Access Memory" in prompt
    assert prompt.endswith("Student answer: random access memory")


def test_prompt_invalid_type():
    """Test that invalid agent type raises KeyError."""
    with pytest.raises(KeyError):
        get_prompt("invalid_agent_type")


def test_api_key_guard_missing(clean_env):
    """Test that missing API key raises ValueError."""
    with pytest.raises(ValueError, match="GEMINI_API_KEY not found"):
        get_api_key()
    assert get_optional_api_key() is None


def test_api_key_success():
    """Test that valid API key is returned when set."""
    with patch.dict(os.environ, {"GEMINI_API_KEY": "test_key_123"}):
        assert get_api_key() == "test_key_123"


def test_grader_defaults(clean_env):
    """Without overrides AI grading is on with a 15 second timeout."""
    assert ai_grading_enabled() is True
    assert get_grader_timeout() == 15.0
    assert get_store_backend() == "memory"


@pytest.mark.parametrize("raw, expected", [
    ("false", False), ("0", False), ("off", False), ("TRUE", True), ("yes", True),
])
def test_ai_grading_flag(clean_env, raw, expected):
    os.environ["AI_GRADING_ENABLED"] = raw
    assert ai_grading_enabled() is expected


def test_grader_timeout_override(clean_env):
    os.environ["GRADER_TIMEOUT_SECONDS"] = "2.5"
    assert get_grader_timeout() == 2.5


def test_grader_timeout_must_be_positive(clean_env):
    os.environ["GRADER_TIMEOUT_SECONDS"] = "0"
    with pytest.raises(ValueError):
        get_grader_timeout()


def test_store_backend_validation(clean_env):
    """Only memory and firestore backends are accepted."""
    os.environ["EXAM_STORE"] = " Firestore "
    assert get_store_backend() == "firestore"
    os.environ["EXAM_STORE"] = "sqlite"
    with pytest.raises(ValueError, match="Unsupported EXAM_STORE"):
        get_store_backend()


def test_firebase_cred_required(clean_env):
    with pytest.raises(ValueError, match="FIREBASE_CRED not found"):
        get_firebase_cred_path()
    os.environ["FIREBASE_CRED"] = "/secrets/firebase.json"
    assert get_firebase_cred_path() == "/secrets/firebase.json"

"""Unit tests for triage/core/config.py."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from triage.core.config import Settings


class TestSettings:
    def test_default_values(self):
        """Settings should have sensible defaults without any env vars."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)
        assert settings.groq_model == "llama-3.3-70b-versatile"
        assert settings.groq_temperature == 0.1
        assert settings.groq_max_tokens == 4096
        assert settings.rate_limit_requests_per_minute == 30
        assert settings.rate_limit_burst_size == 5
        assert settings.log_search_max_iterations == 12
        assert settings.code_search_max_iterations == 8
        assert settings.max_review_rounds == 3
        assert settings.max_reasoning_requests == 5
        assert settings.fallback_window_hours == 24
        assert settings.fallback_log_limit == 500
        assert settings.known_services == []

    def test_env_override(self):
        """Settings should be overridden by TRIAGE_ prefixed env vars."""
        env = {
            "TRIAGE_GROQ_API_KEY": "test-key-123",
            "TRIAGE_GROQ_MODEL": "llama-3.1-8b-instant",
            "TRIAGE_RATE_LIMIT_REQUESTS_PER_MINUTE": "60",
            "TRIAGE_LOG_SEARCH_MAX_ITERATIONS": "5",
            "TRIAGE_KNOWN_SERVICES": '["orders", "payments"]',
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings(_env_file=None)
        assert settings.groq_api_key == "test-key-123"
        assert settings.groq_model == "llama-3.1-8b-instant"
        assert settings.rate_limit_requests_per_minute == 60
        assert settings.log_search_max_iterations == 5
        assert settings.known_services == ["orders", "payments"]

    def test_iteration_budget_must_be_positive(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None, log_search_max_iterations=0)

    def test_review_rounds_must_be_positive(self):
        with patch.dict(os.environ, {"TRIAGE_MAX_REVIEW_ROUNDS": "0"}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

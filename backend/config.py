"""
Nexus Scheduling Agent - Configuration Management
Supports .env files and runtime configuration for AI, scheduling, providers and knowledge retrieval.
"""

import os
from typing import Dict, Any, Optional
from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache


# ============================================
# AI / LLM CONFIGURATION
# ============================================

class AIConfig(BaseSettings):
    """
    AI/LLM Configuration.
    Supports OpenAI and any OpenAI-compatible API for completions and embeddings.
    """
    api_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL for OpenAI-compatible API"
    )
    api_key: str = Field(
        default="",
        description="API key for the LLM provider"
    )
    model_name: str = Field(
        default="gpt-4o-mini",
        description="Model name to use for chat completions"
    )
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Model name to use for knowledge embeddings"
    )
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for AI responses"
    )
    max_tokens: int = Field(
        default=500,
        ge=100,
        le=8000,
        description="Maximum tokens in AI responses"
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per request on transient errors"
    )
    retry_delay: float = Field(
        default=1.0,
        ge=0.0,
        le=30.0,
        description="Initial retry delay in seconds (exponential backoff)"
    )
    timeout_seconds: float = Field(
        default=60.0,
        ge=1.0,
        le=300.0,
        description="Request timeout for the AI service"
    )

    model_config = {
        "env_prefix": "AI_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


# ============================================
# SCHEDULE CONFIGURATION
# ============================================

class ScheduleConfig(BaseSettings):
    """Scheduling heuristics and detector thresholds."""

    timezone: str = Field(
        default="America/New_York",
        description="IANA timezone used for whole-day events and parsed times"
    )

    # Detector
    buffer_threshold_minutes: int = Field(
        default=15,
        ge=0,
        le=120,
        description="Gaps shorter than this are reported as tight transitions"
    )
    max_gap_recommendations: int = Field(
        default=1,
        ge=1,
        le=50,
        description="Gap-related recommendations surfaced per scan"
    )

    # Intent parser defaults
    default_duration_minutes: int = Field(
        default=60,
        ge=5,
        le=480,
        description="Duration used when a request names none"
    )
    default_hour: int = Field(
        default=12,
        ge=0,
        le=23,
        description="Hour used when a request names no time"
    )

    # Course item urgency
    high_priority_hours: int = Field(
        default=24,
        ge=1,
        le=168,
        description="Items due sooner than this are high priority"
    )
    medium_priority_hours: int = Field(
        default=72,
        ge=1,
        le=336,
        description="Items due sooner than this are medium priority"
    )
    urgency_progress_threshold: int = Field(
        default=50,
        ge=0,
        le=100,
        description="High priority items below this progress are urgent"
    )
    urgency_study_minutes: int = Field(
        default=120,
        ge=15,
        le=480,
        description="Study block proposed for an urgent item"
    )

    # Fetching
    fetch_cache_ttl_seconds: float = Field(
        default=30.0,
        ge=0.0,
        le=3600.0,
        description="How long a completed provider fetch is served from cache"
    )

    # Demo / reproducibility
    fixed_today: Optional[str] = Field(
        default=None,
        description="Pin the clock to an ISO datetime (e.g. 2026-01-21T09:00:00)"
    )

    model_config = {
        "env_prefix": "SCHEDULE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


# ============================================
# PROVIDER CONFIGURATION
# ============================================

class CalendarConfig(BaseSettings):
    """Google Calendar REST configuration. The OAuth handshake happens elsewhere."""

    base_url: str = Field(
        default="https://www.googleapis.com/calendar/v3",
        description="Calendar API base URL"
    )
    access_token: str = Field(
        default="",
        description="OAuth bearer token for the calendar API"
    )
    calendar_id: str = Field(
        default="primary",
        description="Calendar to read and write"
    )
    timeout_seconds: float = Field(
        default=15.0,
        ge=1.0,
        le=120.0,
        description="Request timeout for calendar calls"
    )
    max_results: int = Field(
        default=250,
        ge=1,
        le=2500,
        description="Page size for event listing"
    )

    model_config = {
        "env_prefix": "CALENDAR_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


class CanvasConfig(BaseSettings):
    """Canvas LMS REST configuration."""

    base_url: str = Field(
        default="",
        description="Canvas instance URL, e.g. https://canvas.school.edu"
    )
    access_token: str = Field(
        default="",
        description="Canvas API access token"
    )
    timeout_seconds: float = Field(
        default=20.0,
        ge=1.0,
        le=120.0,
        description="Request timeout for Canvas calls"
    )

    model_config = {
        "env_prefix": "CANVAS_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


# ============================================
# KNOWLEDGE CONFIGURATION
# ============================================

class KnowledgeConfig(BaseSettings):
    """Retrieval index configuration."""

    top_k: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Knowledge chunks attached to each reply"
    )
    cache_key: str = Field(
        default="knowledge:embeddings",
        description="Key-value store key holding cached embeddings"
    )
    upload_dir: str = Field(
        default="./uploads",
        description="Where uploaded knowledge documents are saved"
    )
    max_chunk_chars: int = Field(
        default=1500,
        ge=200,
        le=8000,
        description="Upper bound on the size of a document chunk"
    )

    model_config = {
        "env_prefix": "KNOWLEDGE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


def get_database_url() -> Optional[str]:
    """Postgres URL for persisted state; None selects the in-memory store."""
    return os.getenv("DATABASE_URL") or None


# ============================================
# CACHED CONFIGURATION INSTANCES
# ============================================

@lru_cache()
def get_ai_config() -> AIConfig:
    """Get cached AI configuration instance."""
    return AIConfig()


@lru_cache()
def get_schedule_config() -> ScheduleConfig:
    """Get cached schedule configuration instance."""
    return ScheduleConfig()


@lru_cache()
def get_calendar_config() -> CalendarConfig:
    """Get cached calendar configuration instance."""
    return CalendarConfig()


@lru_cache()
def get_canvas_config() -> CanvasConfig:
    """Get cached Canvas configuration instance."""
    return CanvasConfig()


@lru_cache()
def get_knowledge_config() -> KnowledgeConfig:
    """Get cached knowledge configuration instance."""
    return KnowledgeConfig()


def reload_config():
    """Clear configuration cache and reload from environment."""
    get_ai_config.cache_clear()
    get_schedule_config.cache_clear()
    get_calendar_config.cache_clear()
    get_canvas_config.cache_clear()
    get_knowledge_config.cache_clear()


# ============================================
# CONFIGURATION SUMMARY
# ============================================

def get_config_summary() -> Dict[str, Any]:
    """
    Get a summary of all configuration values.
    Secrets are reported only as present/absent.
    """
    ai = get_ai_config()
    schedule = get_schedule_config()
    calendar = get_calendar_config()
    canvas = get_canvas_config()
    knowledge = get_knowledge_config()

    return {
        "ai": {
            "base_url": ai.api_base_url,
            "model": ai.model_name,
            "embedding_model": ai.embedding_model,
            "has_key": bool(ai.api_key),
            "temperature": ai.temperature,
            "max_tokens": ai.max_tokens,
        },
        "schedule": {
            "timezone": schedule.timezone,
            "buffer_threshold_minutes": schedule.buffer_threshold_minutes,
            "max_gap_recommendations": schedule.max_gap_recommendations,
            "default_duration_minutes": schedule.default_duration_minutes,
            "fetch_cache_ttl_seconds": schedule.fetch_cache_ttl_seconds,
            "fixed_today": schedule.fixed_today,
        },
        "calendar": {
            "base_url": calendar.base_url,
            "calendar_id": calendar.calendar_id,
            "has_token": bool(calendar.access_token),
        },
        "canvas": {
            "base_url": canvas.base_url or "Not set",
            "has_token": bool(canvas.access_token),
        },
        "knowledge": {
            "top_k": knowledge.top_k,
            "upload_dir": knowledge.upload_dir,
        },
        "storage": {
            "backend": "postgres" if get_database_url() else "memory",
        },
    }

import logging
import os
from pathlib import Path
from typing import Any, Dict, List

import dotenv

from config import reload_config

logger = logging.getLogger(__name__)

ENV_PATH = Path(os.getenv("NEXUS_ENV_FILE", ".env"))

SECRET_KEYS = {"AI_API_KEY", "CALENDAR_ACCESS_TOKEN", "CANVAS_ACCESS_TOKEN"}


class SettingsManager:
    """Manages reading and writing of environment settings"""

    @staticmethod
    def get_all_settings() -> Dict[str, str]:
        """Read all settings from .env"""
        if not ENV_PATH.exists():
            logger.warning(f".env file not found at {ENV_PATH}")
            return {}

        return dotenv.dotenv_values(ENV_PATH)

    @staticmethod
    def is_manageable(key: str) -> bool:
        return any(
            setting["key"] == key
            for group in SettingsManager.get_manageable_settings()
            for setting in group["settings"]
        )

    @staticmethod
    def update_setting(key: str, value: str) -> bool:
        """Update a specific setting in .env and reload cached configuration"""
        try:
            # Create .env if it doesn't exist
            if not ENV_PATH.exists():
                logger.info("Creating new .env file")
                ENV_PATH.touch()

            dotenv.set_key(str(ENV_PATH), key, value)
            shown = "***" if key in SECRET_KEYS else value
            logger.info(f"Updated setting {key} = {shown}")

            # Also update current environment for immediate effect
            os.environ[key] = value
            reload_config()

            return True
        except OSError as e:
            logger.error(f"Failed to update setting {key}: {str(e)}")
            return False

    @staticmethod
    def get_manageable_settings() -> List[Dict[str, Any]]:
        """Return a schema of settings that can be managed in UI"""
        current = SettingsManager.get_all_settings()

        def secret(key: str) -> str:
            return "***" if current.get(key) else ""

        return [
            {
                "category": "AI Configuration",
                "settings": [
                    {
                        "key": "AI_API_BASE_URL",
                        "label": "API Base URL",
                        "type": "text",
                        "value": current.get("AI_API_BASE_URL", "https://api.openai.com/v1"),
                        "description": "Endpoint for OpenAI-compatible API"
                    },
                    {
                        "key": "AI_API_KEY",
                        "label": "API Key",
                        "type": "password",
                        "value": secret("AI_API_KEY"),
                        "description": "Your API Key"
                    },
                    {
                        "key": "AI_MODEL_NAME",
                        "label": "Model Name",
                        "type": "text",
                        "value": current.get("AI_MODEL_NAME", "gpt-4o-mini"),
                        "description": "Model used for replies"
                    },
                    {
                        "key": "AI_EMBEDDING_MODEL",
                        "label": "Embedding Model",
                        "type": "text",
                        "value": current.get("AI_EMBEDDING_MODEL", "text-embedding-3-small"),
                        "description": "Model used to embed the knowledge base"
                    }
                ]
            },
            {
                "category": "Schedule",
                "settings": [
                    {
                        "key": "SCHEDULE_TIMEZONE",
                        "label": "Timezone",
                        "type": "text",
                        "value": current.get("SCHEDULE_TIMEZONE", "America/New_York"),
                        "description": "IANA timezone for parsing and display"
                    },
                    {
                        "key": "SCHEDULE_BUFFER_THRESHOLD_MINUTES",
                        "label": "Buffer (minutes)",
                        "type": "number",
                        "min": 0,
                        "max": 120,
                        "value": current.get("SCHEDULE_BUFFER_THRESHOLD_MINUTES", "15"),
                        "description": "Gaps shorter than this are flagged"
                    },
                    {
                        "key": "SCHEDULE_FIXED_TODAY",
                        "label": "Demo Date",
                        "type": "text",
                        "value": current.get("SCHEDULE_FIXED_TODAY", ""),
                        "description": "Pin the clock to an ISO datetime for demos"
                    }
                ]
            },
            {
                "category": "Providers",
                "settings": [
                    {
                        "key": "CALENDAR_ACCESS_TOKEN",
                        "label": "Google Calendar Token",
                        "type": "password",
                        "value": secret("CALENDAR_ACCESS_TOKEN"),
                        "description": "OAuth bearer token"
                    },
                    {
                        "key": "CANVAS_BASE_URL",
                        "label": "Canvas URL",
                        "type": "text",
                        "value": current.get("CANVAS_BASE_URL", ""),
                        "description": "e.g. https://canvas.school.edu"
                    },
                    {
                        "key": "CANVAS_ACCESS_TOKEN",
                        "label": "Canvas Token",
                        "type": "password",
                        "value": secret("CANVAS_ACCESS_TOKEN"),
                        "description": "Canvas API access token"
                    }
                ]
            }
        ]

import os
import dotenv
from typing import Dict, Any, List
from pathlib import Path

from pydantic import ValidationError

from config import CalendarConfig, get_calendar_config, reload_config
from logger import logger

ENV_PATH = Path(os.getenv("DASHBOARD_ENV_FILE", Path(__file__).parent / ".env"))


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
    def manageable_keys() -> List[str]:
        return [
            setting["key"]
            for category in SettingsManager.get_manageable_settings()
            for setting in category["settings"]
        ]

    @staticmethod
    def validate_setting(key: str, value: str) -> bool:
        """Check a value against the calendar config before it is written"""
        field = key.removeprefix("CALENDAR_").lower()
        try:
            CalendarConfig.model_validate({**get_calendar_config().model_dump(), field: value})
        except ValidationError as e:
            logger.warning(f"Rejecting invalid value for {key}: {e.errors()[0]['msg']}")
            return False
        return True

    @staticmethod
    def update_setting(key: str, value: str) -> bool:
        """Update a specific setting in .env"""
        if key not in SettingsManager.manageable_keys():
            logger.warning(f"Refusing to update unmanaged setting {key}")
            return False
        if not SettingsManager.validate_setting(key, value):
            return False

        try:
            # Create .env if it doesn't exist
            if not ENV_PATH.exists():
                logger.info("Creating new .env file")
                ENV_PATH.touch()

            dotenv.set_key(ENV_PATH, key, value)
            logger.info(f"Updated setting {key} = {value}")

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
        defaults = get_calendar_config()

        return [
            {
                "category": "Calendar",
                "settings": [
                    {
                        "key": "CALENDAR_TIMEZONE",
                        "label": "Timezone",
                        "type": "text",
                        "value": current.get("CALENDAR_TIMEZONE", defaults.timezone),
                        "description": "IANA timezone for events stored without one"
                    },
                    {
                        "key": "CALENDAR_WEEK_STARTS_ON",
                        "label": "Week Starts On",
                        "type": "select",
                        "options": ["0", "6"],
                        "value": current.get("CALENDAR_WEEK_STARTS_ON", str(defaults.week_starts_on)),
                        "description": "0 = Monday, 6 = Sunday"
                    },
                    {
                        "key": "CALENDAR_REQUIRE_FREE_WINDOW",
                        "label": "Assignments Need Free Time",
                        "type": "select",
                        "options": ["true", "false"],
                        "value": current.get(
                            "CALENDAR_REQUIRE_FREE_WINDOW", str(defaults.require_free_window).lower()
                        ),
                        "description": "Hide assignment blocks placed outside free-time windows"
                    }
                ]
            },
            {
                "category": "Recurrence",
                "settings": [
                    {
                        "key": "CALENDAR_EXPANSION_HORIZON_DAYS",
                        "label": "Expansion Horizon (Days)",
                        "type": "number",
                        "min": 1,
                        "max": 3650,
                        "value": current.get(
                            "CALENDAR_EXPANSION_HORIZON_DAYS", str(defaults.expansion_horizon_days)
                        ),
                        "description": "How far ahead new recurring events are checked for conflicts"
                    },
                    {
                        "key": "CALENDAR_MAX_OCCURRENCES_PER_RULE",
                        "label": "Max Occurrences Per Rule",
                        "type": "number",
                        "min": 1,
                        "max": 10000,
                        "value": current.get(
                            "CALENDAR_MAX_OCCURRENCES_PER_RULE", str(defaults.max_occurrences_per_rule)
                        ),
                        "description": "Cap on instances generated from one recurring event"
                    }
                ]
            }
        ]

"""Application configuration module.

- **settings.py**: Environment-based settings (Pydantic BaseSettings)
  - Database URL, LLM config, debrief model/temperature
  - Statement parameter budget and transaction capability flags
  - Loaded from .env file via pydantic-settings
"""
from debrief_service.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]

from .user_settings_store import UserSettingsStore

__all__ = ["UserSettingsStore"]

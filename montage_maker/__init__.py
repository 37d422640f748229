from .pipeline import MontagePipeline
from .settings import SettingsStore, settings_from_dict, settings_to_dict
from .types import MaskMode, MaskSlot, RatioRect, Rect, Settings

__all__ = [
    'MontagePipeline',
    'SettingsStore',
    'settings_from_dict',
    'settings_to_dict',
    'MaskMode',
    'MaskSlot',
    'RatioRect',
    'Rect',
    'Settings',
]

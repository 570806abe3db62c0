from .config_manager import ConfigManager

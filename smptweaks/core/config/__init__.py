"""
Configuration management subsystem for SMPtweaks.

Static vs Settings Configuration
--------------------------------
**Static (Config):**
- Loaded from environment variables (.env support) at import
- Includes: environment, log level/format, logs/data directories,
  settings file location

**Settings (ConfigManager):**
- Loaded from the YAML settings file over built-in defaults
- Includes: store backend selection and credentials, leveling curve,
  XP multiplier, reward cooldown, autosave interval
- ``STORE_*`` environment variables override the store section

Usage
-----
```python
from smptweaks.core.config import Config, ConfigManager

settings = ConfigManager(Config.CONFIG_FILE).load()
pool_size = settings.get_int("store.pool_size")
```
"""

# Static configuration (environment-based)
from smptweaks.core.config.config import Config, Environment

# Error hierarchy
from smptweaks.core.config.errors import (
    ConfigError,
    ConfigInitializationError,
    ConfigValidationError,
)

# YAML settings
from smptweaks.core.config.manager import DEFAULTS, ConfigManager

__all__ = [
    "Config",
    "Environment",
    "ConfigManager",
    "DEFAULTS",
    "ConfigError",
    "ConfigInitializationError",
    "ConfigValidationError",
]

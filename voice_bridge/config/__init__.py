"""
Configuration module for the media stream bridge.

Key components:
- constants: protocol names, audio formats, model defaults and timing values
- settings: BridgeSettings, the validated deployment profile read from the
  environment (and a .env file)
- logging_config: console and rotating-file logging for the application logger

Usage examples:
```python
from voice_bridge.config.settings import BridgeSettings
settings = BridgeSettings.from_env()  # raises ConfigError if GOOGLE_GEMINI_API_KEY is missing

from voice_bridge.config.logging_config import configure_logging
logger = configure_logging()
logger.info("Application started")
```
"""

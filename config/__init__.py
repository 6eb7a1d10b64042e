"""
Configuration Package

Static constants only:
  timing.py - playback delays, voice timeouts, watchdog interval
  paths.py  - default file locations anchored to the bot directory

User-tunable settings (prefix, mode, volume, reconnection, logging) and chat
messages are loaded at runtime by utils.config.ConfigManager from
settings.yaml / messages.yaml in this directory.
"""

from .timing import *
from .paths import *

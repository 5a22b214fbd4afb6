"""Configuration for the CCKM reconcilers."""
from .settings import CckmConfig, load_settings

__all__ = ["CckmConfig", "load_settings"]

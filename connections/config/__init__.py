"""
Configuration Package

Contains all configuration-related files and settings.

This package separates two types of configuration:
- app_config.py: Flask application configuration (environment-based)
- game_settings.py: Game rules, constants and the bundled puzzle catalogue
"""

from .app_config import Config, DevelopmentConfig, ProductionConfig, TestingConfig, config
from .game_settings import (
    MAX_MISTAKES, MAX_HINTS, TIME_TRIAL_DURATION_SEC, PUZZLE_CATALOGUE,
    validate_puzzle_catalogue_integrity, get_puzzle_statistics
)

__all__ = [
    # App configuration
    'Config', 'DevelopmentConfig', 'ProductionConfig', 'TestingConfig', 'config',
    # Game rules
    'MAX_MISTAKES', 'MAX_HINTS', 'TIME_TRIAL_DURATION_SEC', 'PUZZLE_CATALOGUE',
    'validate_puzzle_catalogue_integrity', 'get_puzzle_statistics'
]

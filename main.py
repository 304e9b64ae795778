#!/usr/bin/env python3
"""
CBT Quiz Server - Main Entry Point

This script runs the computer-based test server. Settings are read from
config.json in the working directory; secrets can come from the environment.

Usage:
    python main.py

Configuration:
    1. Copy config.json and set the token signing key and bootstrap admin
    2. Or set CBT_SECRET_KEY / CBT_DATABASE_URL environment variables
    3. Customize quiz settings (class labels, timer tick) in config.json as needed

Environment Variables:
    CBT_SECRET_KEY: Token signing key (overrides config.json)
    CBT_DATABASE_URL: SQLAlchemy database URL (overrides config.json)
"""

import sys
import os
import json
import logging
from pathlib import Path

import uvicorn

from cbt.config_manager import ConfigManager


def load_config(config_path: Path = Path("config.json")) -> dict:
    """Load configuration from config.json file; an absent file means defaults."""
    if not config_path.exists():
        print(f"⚠️ {config_path} not found, using default settings")
        return {}

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        print(f"❌ Error: Invalid JSON in {config_path}: {e}")
        sys.exit(1)
    except OSError as e:
        print(f"❌ Error loading {config_path}: {e}")
        sys.exit(1)


def apply_environment(config: dict) -> dict:
    """Environment variables take precedence over the file."""
    secret_key = os.getenv('CBT_SECRET_KEY')
    if secret_key:
        config.setdefault('auth', {})['secret_key'] = secret_key

    database_url = os.getenv('CBT_DATABASE_URL')
    if database_url:
        config.setdefault('database', {})['url'] = database_url

    return config


def setup_logging_from_config(config_manager: ConfigManager) -> None:
    """Set up console, main log file and error log file."""
    log_level = getattr(logging, config_manager.get_log_level())
    log_directory = Path(config_manager.get_log_directory())

    # Create logs directory
    log_directory.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    error_handler = logging.FileHandler(log_directory / "errors.log", encoding='utf-8')
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_directory / "cbt.log", encoding='utf-8'),
            error_handler,
        ]
    )


def build_config_manager(config: dict) -> ConfigManager:
    config_manager = ConfigManager()
    result = config_manager.apply(config)
    for failure in result['errors']:
        print(f"❌ {failure['setting']}: {failure['error']}")
    if not result['success']:
        sys.exit(1)
    return config_manager


def main() -> None:
    config = apply_environment(load_config())
    config_manager = build_config_manager(config)
    setup_logging_from_config(config_manager)

    logger = logging.getLogger("cbt")
    logger.info(config_manager.get_settings_summary())
    for warning in config_manager.get_configuration_health_check()['warnings']:
        logger.warning(warning)

    from cbt.api import create_app
    app = create_app(config_manager)
    uvicorn.run(
        app,
        host=config_manager.get_host(),
        port=config_manager.get_port(),
        log_config=None
    )


if __name__ == "__main__":
    try:
        print("📝 Starting CBT Quiz Server...")
        main()
    except KeyboardInterrupt:
        print("\n👋 Server stopped by user")

#!/usr/bin/env python3
"""
Bible Quiz Bot - Main Entry Point

Runs the Discord Bible quiz bot. Configure your bot token in config.json
or set the DISCORD_BOT_TOKEN environment variable.

Usage:
    python main.py [path/to/config.json]

Configuration:
    1. Set your Discord bot token in config.json
    2. Or set DISCORD_BOT_TOKEN environment variable
    3. List admin accounts under admin.admin_emails

Environment Variables:
    DISCORD_BOT_TOKEN: Your Discord bot token (overrides config.json)
"""

import asyncio
import sys
import os
import json
from pathlib import Path

from bible_quiz.bot import run_bot, setup_logging

PLACEHOLDER_TOKEN = "YOUR_DISCORD_BOT_TOKEN_HERE"


def load_config(path="config.json"):
    """Load configuration from a JSON file."""
    config_path = Path(path)

    if not config_path.exists():
        print(f"❌ Error: {config_path} not found!")
        print("Create it from the config.json shipped with the bot and set your Discord bot token.")
        sys.exit(1)

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        print(f"❌ Error: Invalid JSON in {config_path}: {e}")
        sys.exit(1)
    except OSError as e:
        print(f"❌ Error loading {config_path}: {e}")
        sys.exit(1)

    if not isinstance(config, dict):
        print(f"❌ Error: {config_path} must contain a JSON object")
        sys.exit(1)
    return config


def get_bot_token(config):
    """Get bot token from environment variable or config file."""
    token = os.getenv('DISCORD_BOT_TOKEN')
    if token:
        return token

    token = config.get('bot', {}).get('token')
    if not token or token == PLACEHOLDER_TOKEN:
        print("❌ Error: Discord bot token not configured!")
        print("Either:")
        print("  1. Set DISCORD_BOT_TOKEN environment variable")
        print("  2. Update the 'token' field in config.json")
        sys.exit(1)

    return token


def setup_logging_from_config(config):
    """Set up logging based on configuration."""
    log_config = config.get('logging', {})
    return setup_logging(
        level=log_config.get('level', 'INFO'),
        log_directory=log_config.get('log_directory', './logs/')
    )


async def run_bot_with_config(config_path="config.json"):
    """Run the bot with configuration."""
    config = load_config(config_path)
    setup_logging_from_config(config)
    token = get_bot_token(config)
    await run_bot(token, config)


if __name__ == "__main__":
    try:
        print("📖 Starting Bible Quiz Bot...")
        asyncio.run(run_bot_with_config(sys.argv[1] if len(sys.argv) > 1 else "config.json"))
    except KeyboardInterrupt:
        print("\n👋 Bot stopped by user")
    except Exception as e:
        print(f"❌ Failed to start bot: {e}")
        sys.exit(1)

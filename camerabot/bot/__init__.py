"""Telegram bot layer: startup, update dispatch and command routing."""

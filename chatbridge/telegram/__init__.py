"""Telegram front end for the bridge."""

"""Hearth: family portal media and messaging core."""

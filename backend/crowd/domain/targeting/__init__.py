"""Notification targeting: candidate selection, filters and cooldowns."""

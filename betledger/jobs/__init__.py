"""Cron-style entry points."""

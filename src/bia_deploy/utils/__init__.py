"""Shared helpers: console logging, timing decorators, subprocess runner."""

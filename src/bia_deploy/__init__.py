"""Versioned container deploy and rollback for the BIA application on Amazon ECS."""

__version__ = "1.0.0"

"""CLI module for groupbot."""

"""Command-line orchestration for booking operations."""

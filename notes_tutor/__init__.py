"""Command-line interface for Notes Tutor."""

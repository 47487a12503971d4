"""Output layer — Rich rendering and JSON formatting for CLI results."""

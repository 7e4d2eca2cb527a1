"""Terminal host surface: status display and key input."""

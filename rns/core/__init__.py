"""rns core package."""

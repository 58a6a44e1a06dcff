"""rns utils package."""

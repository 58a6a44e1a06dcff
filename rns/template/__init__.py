"""rns template package."""

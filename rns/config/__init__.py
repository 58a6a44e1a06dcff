"""rns config package."""

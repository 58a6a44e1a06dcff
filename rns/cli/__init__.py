"""rns cli package."""

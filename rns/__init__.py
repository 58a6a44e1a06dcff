"""rns - capability composition engine for generated React Native projects."""

__version__ = "0.1.0"

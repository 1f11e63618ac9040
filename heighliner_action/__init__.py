"""GitHub Action that builds blockchain node images with heighliner."""

__version__ = "1.0.0"

"""GitSync - continuous deployment for git-tracked services."""

__version__ = "0.1.0"

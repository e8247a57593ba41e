"""OMF device client: provision OMF types/containers/assets and stream readings."""

__version__ = "0.1.0"

"""Host agent keeping a metadata service in step with local containers."""

__version__ = "0.1.0"

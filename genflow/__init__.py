"""genflow: generation job orchestration for app concepts, icons, screens and cover media."""

__version__ = "0.1.0"

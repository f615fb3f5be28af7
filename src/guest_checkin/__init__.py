"""Camera QR check-in for event guests."""

__version__ = "0.1.0"

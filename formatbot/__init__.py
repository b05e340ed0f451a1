"""formatbot: format, auto-fix and publish a source tree back to its branch."""

__version__ = "0.1.0"

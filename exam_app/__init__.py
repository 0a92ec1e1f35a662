"""Timed exam-taking engine for the ESGIS intranet."""

__version__ = "0.1.0"

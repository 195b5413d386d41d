"""Retail orders insights: declarative aggregate analyses rendered as a report."""

__version__ = "0.1.0"

"""A22_Ingestor: synchronise A22 vehicle transit telemetry into a relational store."""

__version__ = "0.1.0"

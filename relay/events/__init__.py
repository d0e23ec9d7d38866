"""Inbound event models and the processing pipeline."""

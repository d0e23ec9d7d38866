"""Outbound channel clients and the reply sender."""

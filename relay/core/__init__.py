"""Cross-cutting request helpers."""

"""Statistical helpers and technical indicators."""

"""Streaming filtered/paginated reads over canonical dataset files."""

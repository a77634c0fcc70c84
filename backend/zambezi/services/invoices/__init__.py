"""Invoice generation, numbering and lifecycle."""

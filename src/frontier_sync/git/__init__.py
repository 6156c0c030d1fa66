"""Repository access: dulwich-backed accessor, status analysis, errors."""

"""semantic-diff: semantic code slices for the Go changes in a git commit."""

__version__ = "0.1.0"

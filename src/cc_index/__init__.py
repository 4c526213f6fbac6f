"""cc-index: incremental index and on-demand message access for Claude Code transcripts."""

__version__ = "0.1.0"

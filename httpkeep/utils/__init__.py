"""httpkeep utilities: structured logging, identifiers and daemon health tracking."""

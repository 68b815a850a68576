"""Storage layer: note files, the search index and the git client."""

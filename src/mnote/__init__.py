"""
mnote - personal Markdown notes organised in books.

Notes are plain Markdown files inside book directories under a single root.
A SQLite full-text index sits beside them and can always be rebuilt from the
files. Changes are synchronised through git, either on demand or from a
background daemon, and a lock file keeps processes from syncing at once.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("mnote")
except PackageNotFoundError:
    __version__ = "0.3.0"

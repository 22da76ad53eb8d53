"""doing-log - a plain-text log of what you are doing.

Entries live in a TaskPaper-style file grouped by section. The package parses
and writes that file, selects entries with composable filters and provides
command-level operations on top.
"""

__version__ = "0.1.0"

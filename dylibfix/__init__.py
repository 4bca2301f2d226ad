"""dylibfix — make a compiled plugin dylib loadable from more than one install layout.

Rewrites a Mach-O library's own install name to its base name and swaps
known absolute Homebrew dependency paths for ``@rpath`` references, so the
same binary loads from a Homebrew tree or from a self-contained app bundle.
"""

__version__ = "0.1.0"

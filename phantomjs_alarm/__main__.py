"""
Entry point for running the package as a script.

Usage:
    python -m phantomjs_alarm [mirror-url]
    python -m phantomjs_alarm <binary> <version> <architecture>
"""

from .fetch_and_package import main

if __name__ == "__main__":
    main()

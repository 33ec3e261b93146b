"""Main entry point when executing pcopeople as a package.

This allows running the package using python -m pcopeople.
"""

from pcopeople.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()

"""Main entry point when executing portalcli as a package.

This allows running the package using python -m portalcli.
"""

from portalcli.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()

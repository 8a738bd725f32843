# SPDX-License-Identifier: MPL-2.0
"""
Veriforge - Main entry point for the CLI.

This module provides the command-line interface for the veriforge package.
"""

from veriforge.cli.main import cli

if __name__ == "__main__":
    cli()

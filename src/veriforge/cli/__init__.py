# SPDX-License-Identifier: MPL-2.0
"""Command-line interface for veriforge."""

# SPDX-License-Identifier: MPL-2.0
"""HTTP API for veriforge."""

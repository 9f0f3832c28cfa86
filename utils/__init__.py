"""Library App - CLI Utilities Package

Output formatting and input validation helpers for the CLI.
"""

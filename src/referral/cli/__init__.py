"""
CLI layer for referral-spine.

Provides a Typer application; all resolution logic lives in
``referral.resolver`` and its adapters; this package only handles
argument parsing and terminal output.

Entry point::

    referral-spine --help
"""

from referral.cli.app import app

__all__ = ["app"]

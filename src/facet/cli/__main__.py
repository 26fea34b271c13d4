"""CLI entry point for facet.cli module.

Enables execution via: python -m facet.cli
"""

from facet.cli.reconcile import main

if __name__ == "__main__":
    raise SystemExit(main())

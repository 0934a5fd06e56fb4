"""SignalMesh CLI entry point.

Delegates to ``signalmesh.cli`` which houses all Click commands.
Kept minimal so that ``python -m signalmesh`` and the ``signalmesh``
console-script entry point both resolve here.
"""

from __future__ import annotations

from signalmesh.cli import cli


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()

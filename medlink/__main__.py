"""Entry point for python -m medlink execution.

    python -m medlink status
    python -m medlink --help
"""

from medlink.cli import run

if __name__ == "__main__":
    run()

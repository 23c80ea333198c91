"""`python -m main` desde `src/` (mismo comando que el script `fleet-rollout`)."""

from __future__ import annotations

from cli.main import run

if __name__ == "__main__":
    run()

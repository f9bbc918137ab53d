#!/usr/bin/env python3
"""
Apply database migrations.
Usage: python3 run_migrations.py [--docker]
"""
import subprocess
import sys
from pathlib import Path


def run_migrations(docker: bool = False):
    """Run ``alembic upgrade head`` locally or inside the backend container."""
    project_dir = Path(__file__).parent

    if docker:
        cmd = ["docker-compose", "exec", "-w", "/src/backend", "backend", "alembic", "upgrade", "head"]
        cwd = project_dir
    else:
        cmd = ["alembic", "upgrade", "head"]
        cwd = project_dir / "backend"

    print("Running database migrations...")
    try:
        result = subprocess.run(cmd, cwd=cwd, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        print("Migration failed:")
        if e.stderr:
            print(e.stderr)
        if e.stdout:
            print(e.stdout)
        sys.exit(1)
    except FileNotFoundError:
        print(f"'{cmd[0]}' not found.")
        print("\nAlternative:")
        print("   cd backend && alembic upgrade head")
        sys.exit(1)

    print("Migrations applied.")
    if result.stdout:
        print(result.stdout)


if __name__ == "__main__":
    run_migrations(docker="--docker" in sys.argv[1:])

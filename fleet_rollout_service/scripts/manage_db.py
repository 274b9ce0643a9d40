#!/usr/bin/env python
# fleet_rollout_service/scripts/manage_db.py

"""
Database management CLI for the Fleet Rollout Service.
"""
import argparse
import asyncio
import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Dict
from urllib.parse import urlparse

# --- Path Setup ---
service_dir = Path(__file__).parent.parent.absolute()
sys.path.insert(0, str(service_dir / "src"))

from dotenv import load_dotenv

# --- Logging and Helpers ---
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("manage_db")

CORE_TABLES = ("rollouts", "nodes", "drift_events")


def colored(text: str, color: str) -> str:
    """Applies ANSI color codes to text for better terminal output."""
    colors = {
        "red": "\033[91m",
        "green": "\033[92m",
        "yellow": "\033[93m",
        "reset": "\033[0m",
    }
    return f"{colors.get(color, '')}{text}{colors['reset']}"


def run_command(command: str, check: bool = True) -> subprocess.CompletedProcess:
    logger.info(colored(f"--- Running: {command} ---", "yellow"))
    try:
        result = subprocess.run(
            command,
            shell=True,
            check=check,
            text=True,
            capture_output=True,
            cwd=service_dir,
        )
        if result.stdout:
            print(result.stdout)
        if result.stderr:
            # alembic writes its progress to stderr
            print(colored(result.stderr, "yellow"), file=sys.stderr)
        return result
    except subprocess.CalledProcessError as e:
        logger.error(colored(f"Command failed with exit code {e.returncode}", "red"))
        if e.stdout:
            print(e.stdout)
        if e.stderr:
            print(colored(e.stderr, "red"), file=sys.stderr)
        raise


def get_db_params_from_url(db_url: str) -> Dict:
    # psql does not understand the SQLAlchemy driver suffix
    parsed = urlparse(str(db_url).replace("+psycopg", "").replace("+asyncpg", ""))
    return {
        "user": parsed.username or "postgres",
        "password": parsed.password or "postgres",
        "host": parsed.hostname or "localhost",
        "port": parsed.port or 5432,
        "dbname": parsed.path.lstrip("/"),
    }


def admin_conn_str(db_params: Dict, dbname: str = "postgres") -> str:
    return (
        f"postgresql://{db_params['user']}:{db_params['password']}"
        f"@{db_params['host']}:{db_params['port']}/{dbname}"
    )


def create_db(db_params: Dict):
    """Creates the service database if it doesn't exist."""
    db_name = db_params["dbname"]
    logger.info(f"Ensuring database '{db_name}' exists on host '{db_params['host']}'...")
    result = run_command(
        f'psql "{admin_conn_str(db_params)}" -c "CREATE DATABASE {db_name}"', check=False
    )
    if result.returncode == 0:
        logger.info(colored(f"Database '{db_name}' created.", "green"))
    else:
        logger.info(colored(f"Database '{db_name}' already exists.", "green"))


def delete_db(db_params: Dict):
    """Terminates open connections and drops the service database."""
    db_name = db_params["dbname"]
    logger.info(f"Deleting database '{db_name}'...")
    run_command(
        f'psql "{admin_conn_str(db_params)}" -c "SELECT pg_terminate_backend(pid) '
        f"FROM pg_stat_activity WHERE datname = '{db_name}';\"",
        check=False,
    )
    run_command(f'psql "{admin_conn_str(db_params)}" -c "DROP DATABASE IF EXISTS {db_name}"')
    logger.info(colored(f"Database '{db_name}' deleted.", "green"))


def check_initialization_status(db_params: Dict) -> bool:
    """True when the database exists and already holds the core rollout tables."""
    conn_str = admin_conn_str(db_params, db_params["dbname"])
    tables = ", ".join(f"'{t}'" for t in CORE_TABLES)
    result = subprocess.run(
        f'psql "{conn_str}" -tAc "SELECT count(*) FROM information_schema.tables '
        f'WHERE table_name IN ({tables})"',
        shell=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.DEVNULL,
        text=True,
    )
    if result.returncode != 0:
        logger.info(f"Database '{db_params['dbname']}' is not reachable or does not exist yet.")
        return False
    found = int((result.stdout or "0").strip() or 0)
    logger.info(f"Found {found}/{len(CORE_TABLES)} core tables.")
    return found == len(CORE_TABLES)


def init_service(db_params: Dict):
    """Creates and migrates the database unless it is already initialized."""
    logger.info("Checking if the fleet rollout service is already initialized...")
    if check_initialization_status(db_params):
        logger.info(colored("Already initialized. Applying any pending migrations.", "green"))
        run_command("alembic upgrade head")
        return

    create_db(db_params)
    run_command("alembic upgrade head")
    logger.info(colored("Fleet rollout service initialization completed successfully.", "green"))


def recreate_environment(db_params: Dict):
    """Drops the database and rebuilds it from the migration history."""
    logger.info("--- Recreating environment for Fleet Rollout Service ---")
    delete_db(db_params)
    create_db(db_params)
    run_command("alembic upgrade head")
    run_command(
        f'psql "{admin_conn_str(db_params, db_params["dbname"])}" -c "\\dt public.*"'
    )


async def main():
    dotenv_path = service_dir / ".env.dev"
    if dotenv_path.exists():
        logger.info(f"Loading environment variables from {dotenv_path}")
        load_dotenv(dotenv_path=dotenv_path, override=True)
    else:
        logger.warning(f"{dotenv_path} not found. Relying on shell environment variables.")

    from fleet_rollout_service.config import settings

    parser = argparse.ArgumentParser(
        description=f"{settings.PROJECT_NAME} Database Management Tool"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Creates the database and applies all migrations.")
    subparsers.add_parser("recreate", help="Deletes and then fully initializes the database.")
    subparsers.add_parser("delete-db", help="Deletes the database entirely.")
    create_mig_parser = subparsers.add_parser(
        "create-migration", help="Create a new Alembic migration file."
    )
    create_mig_parser.add_argument("-m", "--message", required=True, help="Migration description.")
    subparsers.add_parser("upgrade", help="Apply all pending migrations to the database.")
    downgrade_parser = subparsers.add_parser(
        "downgrade", help="Downgrade migrations by a number of steps."
    )
    downgrade_parser.add_argument(
        "-s", "--step", type=int, default=1, help="Number of steps to downgrade (default: 1)."
    )
    subparsers.add_parser("verify", help="Verify that the DB schema matches the SQLAlchemy models.")

    args = parser.parse_args()

    db_params = get_db_params_from_url(str(settings.DATABASE_URL))
    os.environ["PGPASSWORD"] = db_params["password"]

    try:
        if args.command == "init":
            init_service(db_params)
        elif args.command == "recreate":
            recreate_environment(db_params)
        elif args.command == "delete-db":
            delete_db(db_params)
        elif args.command == "create-migration":
            run_command(f'alembic revision --autogenerate -m "{args.message}"')
        elif args.command == "upgrade":
            run_command("alembic upgrade head")
        elif args.command == "downgrade":
            run_command(f"alembic downgrade -{args.step}")
        elif args.command == "verify":
            run_command("alembic check")

        print(colored("\nOperation completed successfully.", "green"))

    except Exception as e:
        logger.error(colored(f"\nOperation failed: {e}", "red"), exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())

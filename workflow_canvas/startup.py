"""Application startup script and CLI interface."""

import argparse
import sys

from sqlalchemy.orm import sessionmaker

from .config import (
    AppConfig,
    LogLevel,
    get_development_config,
    get_production_config,
    get_testing_config,
    load_config,
    validate_config,
)
from .core.exceptions import WorkflowCanvasError
from .core.logging import get_logger, setup_logging
from .core.serialization import read_workflow_file, validate_workflow, write_workflow_file
from .storage.database import create_database_engine, create_tables, drop_tables
from .storage.migrations import run_migrations
from .storage.workflow_store import SqlWorkflowStore


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        description="Workflow Canvas - design, run and monitor workflows"
    )

    # Server configuration
    parser.add_argument("--host", help="Host to bind the server to (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Port to bind the server to (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    # Environment configuration
    parser.add_argument(
        "--env",
        choices=["development", "production", "testing"],
        help="Environment configuration preset"
    )
    parser.add_argument("--config", help="Path to a dotenv configuration file")

    parser.add_argument("--database-url", help="Database connection URL")

    parser.add_argument(
        "--log-level",
        choices=[level.value for level in LogLevel],
        help="Logging level"
    )
    parser.add_argument("--log-file", help="Path to log file")

    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument("--read-only", action="store_true", help="Reject workflow modifications")

    parser.add_argument("--max-parallel-steps", type=int, help="Steps executed concurrently")
    parser.add_argument("--step-timeout", type=float, help="Step timeout in seconds")

    # Commands
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", help="Run the workflow canvas server")

    db_parser = subparsers.add_parser("db", help="Database management commands")
    db_subparsers = db_parser.add_subparsers(dest="db_command", help="Database commands")
    db_subparsers.add_parser("init", help="Initialize database tables")
    db_subparsers.add_parser("migrate", help="Run database migrations")
    db_subparsers.add_parser("reset", help="Reset database (drop and recreate tables)")

    workflow_parser = subparsers.add_parser("workflow", help="Workflow file commands")
    workflow_subparsers = workflow_parser.add_subparsers(dest="workflow_command", help="Workflow commands")

    validate_parser = workflow_subparsers.add_parser("validate", help="Validate a workflow file")
    validate_parser.add_argument("path", help="Workflow JSON file")

    import_parser = workflow_subparsers.add_parser("import", help="Import a workflow file into the database")
    import_parser.add_argument("path", help="Workflow JSON file")
    import_parser.add_argument("--copy", action="store_true", help="Import under a fresh id")

    export_parser = workflow_subparsers.add_parser("export", help="Export a stored workflow to a file")
    export_parser.add_argument("workflow_id", help="ID of the workflow to export")
    export_parser.add_argument("--output", default=".", help="Target file or directory (default: .)")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_subparsers.add_parser("validate", help="Validate configuration")

    return parser


def load_configuration(args: argparse.Namespace) -> AppConfig:
    """Load configuration based on command line arguments."""
    if args.env == "development":
        config = get_development_config()
    elif args.env == "production":
        config = get_production_config()
    elif args.env == "testing":
        config = get_testing_config()
    else:
        config = load_config(args.config)

    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.reload:
        overrides["reload"] = True
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.log_level:
        overrides["log_level"] = LogLevel(args.log_level)
    if args.log_file:
        overrides["log_file"] = args.log_file
    if args.debug:
        overrides["debug"] = True
    if args.read_only:
        overrides["read_only"] = True
    if args.max_parallel_steps:
        overrides["max_parallel_steps"] = args.max_parallel_steps
    if args.step_timeout:
        overrides["step_timeout"] = args.step_timeout

    # Re-validate so CLI overrides go through the same checks as the environment
    return AppConfig.model_validate({**config.model_dump(), **overrides})


def run_server(config: AppConfig):
    """Run the workflow canvas server."""
    import uvicorn

    from .factory import create_app

    logger = get_logger(__name__)
    logger.info(f"Starting server on {config.host}:{config.port}")

    app = create_app(config)
    uvicorn.run(app, **config.get_uvicorn_config())


def open_store(config: AppConfig) -> SqlWorkflowStore:
    engine = create_database_engine(config.database_url, echo=config.database_echo)
    create_tables(engine)
    return SqlWorkflowStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))


def run_database_command(command: str, config: AppConfig):
    """Run database management commands."""
    logger = get_logger(__name__)
    engine = create_database_engine(config.database_url, echo=config.database_echo)

    if command == "init":
        logger.info("Initializing database tables...")
        create_tables(engine)
        logger.info("Database tables created successfully")

    elif command == "migrate":
        logger.info("Running database migrations...")
        run_migrations(engine)
        logger.info("Database migrations completed successfully")

    elif command == "reset":
        logger.info("Resetting database...")
        drop_tables(engine)
        create_tables(engine)
        run_migrations(engine)
        logger.info("Database reset completed successfully")

    engine.dispose()


def run_workflow_command(args: argparse.Namespace, config: AppConfig) -> int:
    """Run workflow file commands; returns the process exit code."""
    if args.workflow_command == "validate":
        try:
            workflow = read_workflow_file(args.path)
        except WorkflowCanvasError as e:
            print(f"Invalid workflow: {e.message}")
            for problem in getattr(e, "validation_errors", []):
                print(f"  error: {problem}")
            return 1
        result = validate_workflow(workflow)
        print(f"Workflow '{workflow.name}': {len(workflow.steps)} steps, {len(workflow.connections)} connections")
        for warning in result.warnings:
            print(f"  warning: {warning}")
        return 0

    elif args.workflow_command == "import":
        workflow = read_workflow_file(args.path, copy=args.copy)
        saved = open_store(config).save_workflow(workflow)
        print(f"Imported workflow '{saved.name}' as {saved.id}")
        return 0

    elif args.workflow_command == "export":
        workflow = open_store(config).get_workflow(args.workflow_id)
        if workflow is None:
            print(f"Workflow {args.workflow_id} not found")
            return 1
        path = write_workflow_file(workflow, args.output)
        print(f"Exported workflow '{workflow.name}' to {path}")
        return 0

    print("Workflow command required. Use --help for options.")
    return 1


def show_configuration(config: AppConfig):
    """Show current configuration."""
    print("Current Configuration:")
    print(f"  App Name: {config.app_name}")
    print(f"  Version: {config.app_version}")
    print(f"  Debug: {config.debug}")
    print(f"  Read Only: {config.read_only}")
    print(f"  Host: {config.host}")
    print(f"  Port: {config.port}")
    print(f"  Database URL: {config.database_url}")
    print(f"  Log Level: {config.log_level.value}")
    print(f"  Max Parallel Steps: {config.max_parallel_steps}")
    print(f"  Max Concurrent Runs: {config.max_concurrent_runs}")
    print(f"  Step Timeout: {config.step_timeout}")
    print(f"  Zoom Range: {config.min_zoom} - {config.max_zoom}")


def validate_configuration_command(config: AppConfig):
    """Validate configuration and show results."""
    try:
        validate_config(config)
        print("Configuration validation: PASSED")
        print("All configuration settings are valid.")
    except WorkflowCanvasError as e:
        print("Configuration validation: FAILED")
        print(f"Error: {e.message}")
        sys.exit(1)


def main():
    """Main entry point for the application."""
    parser = create_argument_parser()
    args = parser.parse_args()

    try:
        config = load_configuration(args)
        validate_config(config)
        setup_logging(level=config.log_level.value, log_file=config.log_file, log_format=config.log_format)

        if args.command == "run" or args.command is None:
            run_server(config)

        elif args.command == "db":
            if args.db_command:
                run_database_command(args.db_command, config)
            else:
                print("Database command required. Use --help for options.")
                sys.exit(1)

        elif args.command == "workflow":
            sys.exit(run_workflow_command(args, config))

        elif args.command == "config":
            if args.config_command == "show":
                show_configuration(config)
            elif args.config_command == "validate":
                validate_configuration_command(config)
            else:
                print("Configuration command required. Use --help for options.")
                sys.exit(1)
        else:
            parser.print_help()

    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Work Order Classifier - Main Entry Point.

This is the main entry point for the work order classifier. It provides
a command-line interface over the ingestion pipeline, the document
lifecycle operations and the client/supplier directory.

Usage:
    Command Line:
        python main.py ingest order.jpg --uploaded-by kim
        python main.py ingest page1.jpg page2.jpg --strategy keyword
        python main.py reclassify 12 3 --reason "Wrong vendor"
        python main.py entities import clients.csv
        python main.py stats

    Python:
        from main import build_orchestrator
        orchestrator = build_orchestrator()

Author: ML Engineering Team
Version: 1.0.0
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

# Import project modules
from config import ConfigurationManager
from workorder.utils.logger import setup_logger_from_config
from workorder.utils.exceptions import WorkOrderError


def parse_arguments(argv: List[str] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        description="Work Order Classifier",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    Ingest one document with two photos:
        python main.py ingest page1.jpg page2.jpg --uploaded-by kim

    Correct a classification:
        python main.py reclassify 12 3 --reason "Wrong vendor" --by kim

    Load the client directory:
        python main.py entities import data/clients.csv
        """
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to custom configuration file"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    # Ingestion
    ingest = commands.add_parser("ingest", help="Ingest one document made of one or more images")
    ingest.add_argument("images", nargs="+", help="Image files; the first is the primary image")
    ingest.add_argument("--uploaded-by", default=None, help="Uploader identity")
    ingest.add_argument("--client-name", default=None, help="Free-text client name")
    ingest.add_argument("--site-name", default=None, help="Free-text site name")
    ingest.add_argument(
        "--strategy",
        choices=["auto", "keyword", "ai_text", "ai_vision"],
        default="auto",
        help="Classification strategy (default: auto)"
    )

    add_images = commands.add_parser("add-images", help="Append images to a document")
    add_images.add_argument("document_id", type=int)
    add_images.add_argument("images", nargs="+")

    # Classification
    reclassify = commands.add_parser("reclassify", help="Manually assign a document to a client")
    reclassify.add_argument("document_id", type=int)
    reclassify.add_argument("entity_id", type=int)
    reclassify.add_argument("--reason", default=None)
    reclassify.add_argument("--by", dest="corrected_by", default=None, help="Operator identity")

    rerun = commands.add_parser("rerun", help="Re-run automatic classification of a document")
    rerun.add_argument("document_id", type=int)
    rerun.add_argument(
        "--strategy",
        choices=["auto", "keyword", "ai_text", "ai_vision"],
        default="auto"
    )

    # Lifecycle
    for name, help_text in (
        ("show", "Print a document"),
        ("delete", "Move a document to the trash"),
        ("restore", "Restore a document from the trash"),
        ("purge", "Permanently remove a trashed document and its files"),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("document_id", type=int)

    commands.add_parser("stats", help="Print the pipeline report")

    # Entity directory
    entities = commands.add_parser("entities", help="Manage clients/suppliers")
    entity_commands = entities.add_subparsers(dest="entity_command", required=True)

    entity_import = entity_commands.add_parser("import", help="Import entities from CSV or JSON")
    entity_import.add_argument("file", help="CSV or JSON file")

    entity_list = entity_commands.add_parser("list", help="List entities")
    entity_list.add_argument("--all", action="store_true", help="Include inactive entities")

    entity_search = entity_commands.add_parser("search", help="Search entities by name, code or keyword")
    entity_search.add_argument("term")
    entity_search.add_argument("--limit", type=int, default=20)

    return parser.parse_args(argv)


def initialize_system(args: argparse.Namespace) -> ConfigurationManager:
    """
    Initialize configuration and logging.

    Args:
        args: Parsed command-line arguments.

    Returns:
        Initialized configuration manager.
    """
    # Load configuration
    config = ConfigurationManager(args.config)

    # Setup logging
    logger = setup_logger_from_config()

    if args.debug:
        logger.setLevel(logging.DEBUG)
        for handler in logger.handlers:
            handler.setLevel(logging.DEBUG)

    logger.info("=" * 60)
    logger.info("WORK ORDER CLASSIFIER")
    logger.info("=" * 60)
    logger.info(f"Version: {config.get('project.version', '1.0.0')}")
    logger.info(f"Command: {args.command}")

    return config


def build_orchestrator():
    """Build the ingestion orchestrator from configuration."""
    from workorder.pipeline import IngestionOrchestrator

    return IngestionOrchestrator()


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def _load_uploads(paths: List[str]) -> list:
    from workorder.input_handler import UploadedFile

    uploads = []
    for path in paths:
        if not Path(path).is_file():
            raise FileNotFoundError(f"Input file not found: {path}")
        uploads.append(UploadedFile.from_path(path))
    return uploads


def run_entities_command(args: argparse.Namespace) -> int:
    """Entity directory subcommands."""
    from workorder.storage import DatabaseHandler, EntityDirectory

    directory = EntityDirectory(DatabaseHandler())

    if args.entity_command == "import":
        if not Path(args.file).is_file():
            raise FileNotFoundError(f"Input file not found: {args.file}")
        _print_json(directory.bulk_import(args.file))
    elif args.entity_command == "list":
        entities = directory.list_all() if args.all else directory.list_active()
        _print_json([e.to_dict() for e in entities])
    elif args.entity_command == "search":
        _print_json([e.to_dict() for e in directory.search(args.term, args.limit)])

    return 0


def run_command(args: argparse.Namespace) -> int:
    """
    Dispatch one CLI command.

    Returns:
        Exit code (0 for success).
    """
    if args.command == "entities":
        return run_entities_command(args)

    from workorder.input_handler import UploadMetadata

    orchestrator = build_orchestrator()
    result: Dict[str, Any]

    if args.command == "ingest":
        document = orchestrator.ingest(
            _load_uploads(args.images),
            UploadMetadata(
                uploaded_by=args.uploaded_by,
                client_name=args.client_name,
                site_name=args.site_name,
            ),
            strategy=args.strategy,
        )
        result = document.to_dict()
    elif args.command == "add-images":
        result = orchestrator.add_images(args.document_id, _load_uploads(args.images)).to_dict()
    elif args.command == "reclassify":
        result = orchestrator.reclassify(
            args.document_id, args.entity_id, args.reason, args.corrected_by
        ).to_dict()
    elif args.command == "rerun":
        result = orchestrator.rerun_classification(args.document_id, args.strategy).to_dict()
    elif args.command == "show":
        result = orchestrator.get(args.document_id).to_dict()
    elif args.command == "delete":
        result = orchestrator.delete(args.document_id).to_dict()
    elif args.command == "restore":
        result = orchestrator.restore(args.document_id).to_dict()
    elif args.command == "purge":
        orchestrator.purge(args.document_id)
        result = {'purged': args.document_id}
    elif args.command == "stats":
        print(orchestrator.stats().print_report())
        return 0
    else:
        raise ValueError(f"Unknown command: {args.command}")

    _print_json(result)
    return 0


def main(argv: List[str] = None) -> int:
    """
    Main function - entry point for command-line execution.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    try:
        # Parse command-line arguments
        args = parse_arguments(argv)

        # Initialize system
        initialize_system(args)

        return run_command(args)

    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    except (WorkOrderError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 130

    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        if "--debug" in sys.argv:
            import traceback
            traceback.print_exc()
        return 1

    finally:
        from workorder.ocr_engine import shutdown_ocr_engine
        shutdown_ocr_engine()


if __name__ == "__main__":
    sys.exit(main())

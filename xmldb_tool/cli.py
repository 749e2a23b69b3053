"""
Command-line interface for the XML/relational game data bridge.

Sub-commands:
    infer    infer table configurations (and DDL) from a dataset's XML files
    ddl      render or execute the DDL of a configured dataset
    import   load XML files into the dataset's tables
    export   regenerate a dataset's XML document from its tables
    analyze  discover value-based relationships across an XML corpus
"""

import sys
import argparse
import logging

from pathlib import Path
from typing import List, Optional

from . import __version__
from .config.config_manager import ConfigManager, get_config_manager
from .config.processing_defaults import ProcessingDefaults
from .exceptions import ConfigurationError, XmlDbError
from .database.migration_engine import MigrationEngine
from .processing import DbToXmlExporter, XmlToDbImporter
from .relationship import AnalyzerConfig, RelationshipAnalyzer
from .rewrite import BatchFieldRewriter, create_text_service
from .schema import DdlGenerator, InferenceConfig, SchemaInferenceEngine, TableConfStore, TableForest


def _setup_logging(log_level: str, log_file: Optional[str]) -> None:
    # Leave an already configured root logger alone (embedding applications, tests)
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    root_logger.setLevel(getattr(logging, log_level.upper()))
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="xmldb_tool", description="XML <-> relational game data bridge")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config-dir", help="Directory holding application.yml and conf/ (default: cwd)")
    parser.add_argument("--log-level", default=ProcessingDefaults.LOG_LEVEL,
                        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
                        help=f"Logging level (default: {ProcessingDefaults.LOG_LEVEL})")
    parser.add_argument("--log-file", help="Also write the log to this file")

    commands = parser.add_subparsers(dest="command", required=True)

    infer = commands.add_parser("infer", help="Infer table configurations from XML files")
    infer.add_argument("dataset", help="Dataset (root table) name")
    infer.add_argument("files", nargs="+", help="XML files of the dataset")
    infer.add_argument("--encoding", help="Declared file encoding (default: dataset setting)")
    infer.add_argument("--no-ddl", action="store_true", help="Do not write <dataset>.sql next to the conf")

    ddl = commands.add_parser("ddl", help="Render the DDL of a configured dataset")
    ddl.add_argument("dataset", help="Dataset (root table) name")
    ddl.add_argument("--output", help="Write DDL to this file instead of stdout")
    ddl.add_argument("--execute", action="store_true", help="Run the DDL against the database")

    load = commands.add_parser("import", help="Load XML files into the database")
    load.add_argument("dataset", help="Dataset (root table) name")
    load.add_argument("files", nargs="+", help="XML files, in record order")
    load.add_argument("--encoding", help="Declared file encoding (default: dataset setting)")
    load.add_argument("--batch-size", type=int, help="Rows per transaction")
    load.add_argument("--workers", type=int, help="Parallel batch workers")
    load.add_argument("--no-reload", action="store_true", help="Append instead of replacing existing rows")
    load.add_argument("--rewrite-field", action="append", default=[],
                      help="Root column to rewrite through a text service (repeatable)")
    load.add_argument("--model", default="qwen", help="Text service for --rewrite-field (default: qwen)")

    export = commands.add_parser("export", help="Regenerate a dataset's XML from the database")
    export.add_argument("dataset", help="Dataset (root table) name")
    export.add_argument("--output", help="Destination file (default: <export dir>/<dataset>.xml)")
    export.add_argument("--encoding", help="Output encoding (default: dataset setting)")
    export.add_argument("--page-size", type=int, help="Root rows per page")
    export.add_argument("--workers", type=int, help="Parallel page workers")

    analyze = commands.add_parser("analyze", help="Discover relationships across XML files")
    analyze.add_argument("directories", nargs="*", help="Directories to scan (default: xmlPath.<database>)")
    analyze.add_argument("--database", help="Database whose xmlPath setting to use")
    analyze.add_argument("--output", help="Report file (default: <conf dir>/analysis/relationship-analysis.json)")

    return parser


def _load_forest(config_manager: ConfigManager, dataset: str) -> TableForest:
    tables = TableConfStore(config_manager.conf_dir).load(dataset)
    if not tables:
        raise ConfigurationError(f"No table configuration for dataset {dataset}; run 'infer' first",
                                 source=dataset)
    return TableForest.build(tables)


def _engine(config_manager: ConfigManager):
    return MigrationEngine(schema_name=config_manager.database_config.schema_name,
                           connection_timeout=config_manager.database_config.connection_timeout)


def run_infer(args, config_manager: ConfigManager, logger: logging.Logger) -> int:
    store = TableConfStore(config_manager.conf_dir)
    engine = SchemaInferenceEngine(
        InferenceConfig(
            varchar_threshold=config_manager.processing_params.varchar_threshold,
            max_table_name_length=config_manager.processing_params.max_table_name_length,
            single_record_datasets=tuple(config_manager.get_single_record_datasets()),
        ),
        store=store,
    )
    encoding = args.encoding or config_manager.get_dataset_encoding(args.dataset)
    result = engine.infer_files(args.files, dataset=args.dataset, encoding=encoding)
    store.save(args.dataset, result.tables)

    for conflict in result.conflicts:
        logger.warning(f"Schema conflict: {conflict}")

    if not args.no_ddl:
        forest = TableForest.build(result.tables)
        ddl_path = DdlGenerator(config_manager.database_config.schema_name).write(
            forest, store.conf_dir / f"{args.dataset}.sql", root_table=args.dataset)
        logger.info(f"DDL written to {ddl_path}")
    return 0


def run_ddl(args, config_manager: ConfigManager, logger: logging.Logger) -> int:
    forest = _load_forest(config_manager, args.dataset)
    generator = DdlGenerator(config_manager.database_config.schema_name)
    script = generator.generate(forest, root_table=args.dataset)

    if args.output:
        generator.write(forest, args.output, root_table=args.dataset)
        logger.info(f"DDL written to {args.output}")
    elif not args.execute:
        print(script)

    if args.execute:
        statements = _engine(config_manager).execute_script(script)
        logger.info(f"Executed {statements} DDL statements for {args.dataset}")
    return 0


def run_import(args, config_manager: ConfigManager, logger: logging.Logger) -> int:
    forest = _load_forest(config_manager, args.dataset)
    importer = XmlToDbImporter.from_config(_engine(config_manager), config_manager,
                                           batch_size=args.batch_size, workers=args.workers)

    field_rewriter = None
    if args.rewrite_field:
        field_rewriter = BatchFieldRewriter(create_text_service(args.model, config_manager), config_manager)

    result = importer.import_files(
        args.files, forest, args.dataset,
        encoding=args.encoding or config_manager.get_dataset_encoding(args.dataset),
        reload=not args.no_reload,
        field_rewriter=field_rewriter,
        rewrite_columns=args.rewrite_field,
    )

    logger.info(f"Rows written: {result.rows_written}, rows failed: {result.rows_failed}, "
                f"success rate: {result.success_rate:.1f}%")
    for error in result.errors:
        logger.error(error)
    return 0 if result.batches_failed == 0 and not result.files_skipped else 1


def run_export(args, config_manager: ConfigManager, logger: logging.Logger) -> int:
    forest = _load_forest(config_manager, args.dataset)
    exporter = DbToXmlExporter.from_config(_engine(config_manager), config_manager,
                                           page_size=args.page_size, workers=args.workers)
    destination = Path(args.output) if args.output else config_manager.export_dir / f"{args.dataset}.xml"
    result = exporter.export(forest, args.dataset, destination,
                             encoding=args.encoding or config_manager.get_dataset_encoding(args.dataset))

    logger.info(f"Records written: {result.records_written}, skipped: {result.records_skipped}, "
                f"orphan rows: {result.orphan_rows}")
    return 0


def run_analyze(args, config_manager: ConfigManager, logger: logging.Logger) -> int:
    analyzer = RelationshipAnalyzer(AnalyzerConfig.from_config_manager(config_manager))
    if args.directories:
        report = analyzer.analyze(args.directories)
        output = Path(args.output) if args.output else None
        if output is None:
            print(report.to_json())
        else:
            report.persist_report(output)
    else:
        report = analyzer.analyze_configured(config_manager, args.database)
        if args.output:
            report.persist_report(args.output)

    for relationship in report.relationships[:20]:
        logger.info(f"{relationship.formatted_source} -> {relationship.formatted_target} "
                    f"(confidence {relationship.confidence:.2f}, {relationship.match_count} matches)")
    return 0


COMMANDS = {
    "infer": run_infer,
    "ddl": run_ddl,
    "import": run_import,
    "export": run_export,
    "analyze": run_analyze,
}


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for the CLI application.

    Args:
        args: Optional command line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parser = build_parser()
    options = parser.parse_args(sys.argv[1:] if args is None else args)

    _setup_logging(options.log_level, options.log_file)
    logger = logging.getLogger(__name__)
    logger.info(f"xmldb_tool v{__version__}: {options.command}")

    try:
        config_manager = get_config_manager(options.config_dir)
        if logger.isEnabledFor(logging.DEBUG):
            ProcessingDefaults.log_summary(logger)
            logger.debug(f"Active configuration: {config_manager.get_configuration_summary()}")
        return COMMANDS[options.command](options, config_manager, logger)
    except XmlDbError as e:
        logger.error(f"{options.command} failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())

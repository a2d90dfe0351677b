"""CLI interface for repository builds.

Usage::

    python -m debrepo.pipeline [build|rollback] [--force] [config.yaml]

``--force`` rebuilds git sources whose recorded revision is unchanged.
"""

import sys

import yaml

from ..common.config import DEFAULT_CONFIG_PATH, load_typed_config
from ..common.errors import ConfigError, PublishError
from ..common.logger import setup_logger
from ..repos.publisher import AtomicPublisher
from .orchestrator import RepositoryBuilder
from .report import RunOutcome

COMMANDS = ("build", "rollback")

EXIT_CODES = {
    RunOutcome.SUCCESS: 0,
    RunOutcome.ABORTED: 1,
    RunOutcome.PARTIAL: 2,
}

USAGE = "Usage: python -m debrepo.pipeline [build|rollback] [--force] [config.yaml]"


def main(argv=None) -> int:
    """Main entry point for the debrepo CLI."""
    args = list(sys.argv[1:] if argv is None else argv)
    if args and args[0] in ("-h", "--help"):
        print(USAGE)
        return 0

    command = "build"
    if args and args[0] in COMMANDS:
        command = args.pop(0)
    force = "--force" in args
    args = [a for a in args if a != "--force"]
    if len(args) > 1:
        print(USAGE, file=sys.stderr)
        return 1
    config_path = args[0] if args else DEFAULT_CONFIG_PATH

    try:
        config = load_typed_config(config_path)
    except (FileNotFoundError, TypeError, yaml.YAMLError, ConfigError) as e:
        print(f"Error: invalid configuration {config_path}: {e}", file=sys.stderr)
        return 1
    if force:
        config.build.force = True

    logger = setup_logger(
        log_dir=config.logging.log_dir,
        level=config.logging.level,
    )

    if command == "rollback":
        publisher = AtomicPublisher(config.root, keep_snapshots=config.retention.snapshots)
        try:
            restored = publisher.rollback()
        except PublishError as e:
            logger.error(f"Rollback failed: {e}")
            return 1
        print(f"Live tree: {restored}")
        return 0

    with RepositoryBuilder(config) as builder:
        report = builder.run()

    print(f"Outcome: {report.outcome.name}")
    if report.build_id:
        print(f"Build: {report.build_id}")
    print(f"Packages published: {report.packages_published}")
    for failure in report.failures:
        print(f"Failed: {failure.source} [{failure.error_class.name}] {failure.message}")
    if report.error_message:
        print(f"Error: {report.error_message}")

    return EXIT_CODES[report.outcome]


if __name__ == "__main__":
    sys.exit(main())

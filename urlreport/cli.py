"""Command-line front-end to the same pipeline the HTTP service runs."""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

from urlreport.config import Settings, settings
from urlreport.db.connection import run_migrations
from urlreport.jobs.events import JobEvent, ProgressEvent
from urlreport.main import build_client, build_pipeline, configure_logging
from urlreport.repositories.submission_repository import SubmissionRepository

logger = logging.getLogger("urlreport.cli")


class LoggingObserver:
    """Writes job events to the log instead of a live channel."""

    async def publish(self, job_id: str, event: JobEvent) -> None:
        if isinstance(event, ProgressEvent):
            logger.info("[%s] %s (%d%%)", event.stage, event.message, event.progress)
            return
        level = logging.WARNING if event.name in ("rate-limit", "batch-error", "invalid-urls", "url-limit-warning") else logging.INFO
        logger.log(level, "[%s] %s", event.name, event.model_dump(by_alias=True, exclude_none=True))


def load_urls(path: Path) -> list[str]:
    """One URL per line; blank lines are ignored."""
    return [line.strip() for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


async def _report(app_settings: Settings, path: Path) -> int:
    urls = load_urls(path)
    if not urls:
        logger.error("No URLs found in %s", path)
        return 1
    logger.info("Loaded %d URLs from %s", len(urls), path)
    repository = SubmissionRepository(app_settings.DB_PATH)
    controller, _ = build_pipeline(app_settings, repository, build_client(app_settings), LoggingObserver())
    event = await controller.run(controller.registry.create(), urls)
    return 0 if event is not None and event.success else 1


async def _check(app_settings: Settings) -> int:
    repository = SubmissionRepository(app_settings.DB_PATH)
    _, poller = build_pipeline(app_settings, repository, build_client(app_settings), LoggingObserver())
    summary = await poller.run()
    logger.info("Checked %d submissions in %d groups, updated %d", summary.total_checked, summary.batches, summary.updated)
    return 0


def _export(app_settings: Settings, tag: str, output: Path) -> int:
    repository = SubmissionRepository(app_settings.DB_PATH)
    urls = list(repository.iter_urls_with_tag(tag))
    if not urls:
        logger.info("No URLs tagged %r", tag)
        return 0
    output.write_text("\n".join(urls), encoding="utf-8")
    logger.info("Exported %d URLs tagged %r to %s", len(urls), tag, output)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="urlreport", description="Bulk URL reporting and status reconciliation")
    commands = parser.add_subparsers(dest="command", required=True)

    report = commands.add_parser("report", help="report the URLs listed in a text file")
    report.add_argument("file", type=Path)

    commands.add_parser("check", help="poll the reporting API for pending submissions")

    export = commands.add_parser("export-credited", help="write tagged URLs to a text file")
    export.add_argument("--tag", default="credited")
    export.add_argument("-o", "--output", type=Path, default=Path("credited-urls.txt"))
    return parser


def main(argv: list[str] | None = None, app_settings: Settings | None = None) -> int:
    args = build_parser().parse_args(argv)
    app_settings = app_settings or settings
    configure_logging(app_settings.LOG_LEVEL)
    run_migrations(app_settings.DB_PATH)

    if args.command == "report":
        if not app_settings.REPORTER_EMAIL:
            logger.error("REPORTER_EMAIL is not configured")
            return 2
        if not args.file.is_file():
            logger.error("File not found: %s", args.file)
            return 2
        return asyncio.run(_report(app_settings, args.file))
    if args.command == "check":
        return asyncio.run(_check(app_settings))
    return _export(app_settings, args.tag, args.output)


if __name__ == "__main__":
    sys.exit(main())

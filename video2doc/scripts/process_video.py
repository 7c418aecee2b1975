from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence

from video2doc.config import load_settings
from video2doc.dependencies import get_pipeline
from video2doc.errors import PipelineError
from video2doc.logging_config import configure_application_logging
from video2doc.models.document_contracts import StyleConfig
from video2doc.repositories.account_repository import AccountRepository
from video2doc.repositories.database import Database
from video2doc.repositories.usage_repository import UsageRepository
from video2doc.services.document_pipeline_service import PipelineProgress
from video2doc.services.quota_service import QuotaEvaluator
from video2doc.services.subscription_limits import known_tiers


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Turn a video into a document, or inspect account tiers and usage.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    process_parser = subparsers.add_parser(
        "process", help="Create a document for a video and process it now."
    )
    process_parser.add_argument("--account-id", required=True, help="Owning account id.")
    process_parser.add_argument("--video-url", required=True, help="Video link to process.")
    process_parser.add_argument(
        "--format", choices=["markdown", "html", "plain"], default="markdown"
    )
    process_parser.add_argument(
        "--tone", choices=["formal", "casual", "technical", "academic"], default="formal"
    )
    process_parser.add_argument(
        "--skill-level",
        choices=["beginner", "intermediate", "advanced"],
        default="intermediate",
    )
    process_parser.add_argument(
        "--output-type", choices=["tutorial", "guide", "reference"], default="tutorial"
    )

    tier_parser = subparsers.add_parser("set-tier", help="Set an account's subscription tier.")
    tier_parser.add_argument("--account-id", required=True)
    tier_parser.add_argument("--tier", required=True, choices=list(known_tiers()))

    usage_parser = subparsers.add_parser("usage", help="Show this month's usage for an account.")
    usage_parser.add_argument("--account-id", required=True)

    return parser.parse_args(argv)


def _print_progress(progress: PipelineProgress) -> None:
    print(f"[{progress.progress:3d}%] {progress.stage}: {progress.message}")


async def _process(args: argparse.Namespace) -> int:
    pipeline = get_pipeline()
    style = StyleConfig(
        format=args.format,
        tone=args.tone,
        skill_level=args.skill_level,
        output_type=args.output_type,
    )
    document = pipeline.create_document(
        account_id=args.account_id,
        video_url=args.video_url,
        style=style,
    )
    print(f"Created document: {document.document_id}")
    try:
        completed = await pipeline.process(
            document.document_id,
            document.source_reference,
            on_progress=_print_progress,
        )
    except PipelineError as exc:
        print(f"Processing failed ({exc.code}): {exc.user_message}")
        return 1

    print(f"Completed document: {completed.document_id}")
    print()
    print(completed.content or "")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    if args.command == "process":
        settings = load_settings()
        configure_application_logging(settings)
        return asyncio.run(_process(args))

    settings = load_settings(validate_provider_secrets=False)
    database = Database(settings.db_path)
    database.initialize()

    if args.command == "set-tier":
        AccountRepository(database).set_tier(args.account_id, args.tier)
        print(f"Account {args.account_id} is now on the {args.tier} plan.")
        return 0

    if args.command == "usage":
        quota = QuotaEvaluator(
            accounts=AccountRepository(database),
            usage=UsageRepository(database),
        )
        decision = quota.can_process(args.account_id, 0)
        limit = decision.limits.documents_per_month
        print(f"account_id\t{args.account_id}")
        print(f"month\t{decision.usage.month}")
        print(f"tier\t{decision.tier}")
        print(
            f"documents\t{decision.usage.documents_processed}/"
            f"{limit if limit is not None else 'unlimited'}"
        )
        print(f"video_seconds\t{decision.usage.total_video_duration_seconds}")
        return 0

    raise RuntimeError(f"Unhandled command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())

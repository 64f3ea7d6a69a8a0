from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Iterable, List, Optional

import yaml

from quotedesk.app.services.errors import ServiceError
from quotedesk.app.services.ingest_service import format_quote_number, ingest_pipeline_from_context
from quotedesk.app.services.rate_sync import rate_sync_from_context
from quotedesk.settings import build_service_context


class CLIError(Exception):
    """Raised when user input is invalid."""


def _resolve_format(path: Path, explicit: Optional[str], allowed: Iterable[str]) -> str:
    if explicit:
        fmt = explicit.lower()
        if fmt not in allowed:
            raise CLIError(f"Unsupported format '{explicit}'. Allowed: {', '.join(sorted(allowed))}")
        return fmt
    suffix = path.suffix.lower()
    if suffix == ".json" and "json" in allowed:
        return "json"
    if suffix in (".yaml", ".yml") and "yaml" in allowed:
        return "yaml"
    raise CLIError("Unable to infer format from file extension. Please pass --format.")


def _read_emails(path: Path, fmt: str) -> List[Any]:
    if not path.exists():
        raise CLIError(f"File not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(text or "[]") if fmt == "json" else yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as exc:
        raise CLIError(f"Could not parse {path}: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("emails")
    if not isinstance(data, list):
        raise CLIError("Payload must be a list of emails or an object with an 'emails' list.")
    return data


def cmd_list_rates(args: argparse.Namespace) -> None:
    ctx = args.ctx
    engine = rate_sync_from_context(ctx)
    documents = engine.list_documents()
    mapped = {m.storage_key: m for m in ctx.rate_index.load()}
    for doc in documents:
        mapping = mapped.get(doc.path)
        handle = mapping.inference_file_id if mapping else "-"
        print(f"{doc.name}\t{doc.size}\t{handle}")
    print(f"{len(documents)} rate file(s), {len(mapped)} indexed.")


def cmd_sync_rates(args: argparse.Namespace) -> None:
    if args.ctx.inference is None:
        raise CLIError("Inference service is disabled (SKIP_LLM_SETUP=1).")
    report = rate_sync_from_context(args.ctx).sync()
    print(
        f"Synced rates: uploaded={len(report.uploaded)} skipped={len(report.skipped)} "
        f"pruned={len(report.pruned)} errors={len(report.errors)}."
    )
    for error in report.errors:
        print(f"- {error['filename']}: {error['error']}", file=sys.stderr)


def cmd_rebuild_rates(args: argparse.Namespace) -> None:
    if args.ctx.inference is None:
        raise CLIError("Inference service is disabled (SKIP_LLM_SETUP=1).")
    mappings = rate_sync_from_context(args.ctx).rebuild()
    print(f"Rebuilt rate index: {len(mappings)} file(s) registered.")


def cmd_ingest(args: argparse.Namespace) -> None:
    path = Path(args.path)
    fmt = _resolve_format(path, args.format, {"json", "yaml"})
    emails = _read_emails(path, fmt)
    result = ingest_pipeline_from_context(args.ctx).process_all(emails)
    print(json.dumps(result.to_dict(), indent=2))


def cmd_next_quote_number(args: argparse.Namespace) -> None:
    value = args.ctx.quote_numbers.next()
    print(format_quote_number(value, args.ctx.quote_number_prefix))


def cmd_cleanup_quotations(args: argparse.Namespace) -> None:
    days = args.days if args.days is not None else args.ctx.retention_days
    if days < 1:
        raise CLIError("--days must be at least 1.")
    stats = args.ctx.quotations.delete_older_than(days)
    print(f"Deleted {stats['deleted']} of {stats['scanned']} quotation(s) older than {days} days.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage rate documents and quotations.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_rates = subparsers.add_parser("list-rates", help="List stored rate files and their handles.")
    list_rates.set_defaults(func=cmd_list_rates)

    sync_rates = subparsers.add_parser("sync-rates", help="Upload unindexed rate files, prune stale entries.")
    sync_rates.set_defaults(func=cmd_sync_rates)

    rebuild = subparsers.add_parser("rebuild-rates", help="Re-upload every rate file and rewrite the index.")
    rebuild.set_defaults(func=cmd_rebuild_rates)

    ingest = subparsers.add_parser("ingest", help="Ingest a batch of emails from a JSON/YAML file.")
    ingest.add_argument("--path", required=True)
    ingest.add_argument("--format", choices=("json", "yaml"), default=None)
    ingest.set_defaults(func=cmd_ingest)

    next_number = subparsers.add_parser("next-quote-number", help="Allocate the next quote number.")
    next_number.set_defaults(func=cmd_next_quote_number)

    cleanup = subparsers.add_parser("cleanup-quotations", help="Delete quotations past the retention window.")
    cleanup.add_argument("--days", type=int, default=None)
    cleanup.set_defaults(func=cmd_cleanup_quotations)

    return parser


def main(argv: Optional[List[str]] = None, ctx=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.ctx = ctx if ctx is not None else build_service_context()
    try:
        args.func(args)
    except CLIError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except ServiceError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

"""CLI interface for the generation pipeline."""

import argparse
import json
import logging
import sys

from career_ai.config import AppConfig
from career_ai.errors import PipelineError
from career_ai.models import ArtifactFilters
from career_ai.orchestrator import Orchestrator, build_orchestrator


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _parse_options(pairs: list[str] | None) -> dict:
    """Turn ``key=value`` pairs into an options dict.

    Values that parse as JSON (numbers, booleans, lists) are decoded;
    everything else stays a string.

    Raises:
        ValueError: If a pair has no ``=``.
    """
    options: dict = {}
    for pair in pairs or []:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Expected key=value, got {pair!r}")
        try:
            value = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            value = raw
        options[key.strip()] = value
    return options


def serve(config: AppConfig | None = None) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    cfg = config or AppConfig()
    print(f"\n🚀 Serving on http://{cfg.server.host}:{cfg.server.port}/api/v1")
    uvicorn.run("career_ai.web:app", host=cfg.server.host, port=cfg.server.port)


def generate(
    user_id: str,
    job_id: str,
    kind: str,
    options: dict | None = None,
    config: AppConfig | None = None,
    orchestrator: Orchestrator | None = None,
) -> int:
    """Run one generation request and print the result as JSON.

    Args:
        user_id: Requesting user.
        job_id: Target job id.
        kind: Generation kind, e.g. ``resume`` or ``cover-letter``.
        options: Generation options.
        config: Application configuration. Uses defaults if not provided.
        orchestrator: Pre-built orchestrator; built from *config* otherwise.

    Returns:
        Process exit code: 0 on success, 1 on failure.
    """
    orch = orchestrator or build_orchestrator(config or AppConfig())

    print(f"\n🤖 Generating {kind} for job {job_id} ({orch.provider_name} provider)...")
    outcome = orch.request_generation(kind, user_id, job_id, options or {})

    if not outcome.ok:
        print(f"\n❌ {outcome.error.kind.value}: {outcome.error.message}")
        if outcome.error.retry_after is not None:
            print(f"   Retry in {outcome.error.retry_after}s")
        if outcome.content is not None:
            print(json.dumps(outcome.content, indent=2, ensure_ascii=False))
        return 1

    artifact = outcome.artifact
    print(f"\n✅ {artifact.title} ({artifact.id}) in {outcome.latency_s:.2f}s\n")
    print(json.dumps(artifact.content, indent=2, ensure_ascii=False))
    return 0


def list_artifacts(
    user_id: str,
    config: AppConfig | None = None,
    orchestrator: Orchestrator | None = None,
) -> int:
    """Print the user's artifacts, newest first.

    The in-memory store only lives for one process, so this is mainly
    useful with ``STORE_BACKEND=chroma``.
    """
    orch = orchestrator or build_orchestrator(config or AppConfig())
    try:
        items = orch.list_artifacts(user_id, ArtifactFilters())
    except PipelineError as exc:
        error = exc.to_error()
        print(f"\n❌ {error.kind.value}: {error.message}")
        return 1

    if not items:
        print("No artifacts found.")
        return 0

    print(f"\n📚 {len(items)} artifact(s) for {user_id}:\n")
    for item in items:
        print(f"  {item.created_at}  {item.kind.value:<22} {item.id}  {item.title or ''}")
    return 0


def main() -> None:
    """CLI entry point — parse arguments and dispatch to a command."""
    parser = argparse.ArgumentParser(
        description="Career AI — artifact generation pipeline",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("serve", help="Run the HTTP API")

    gen_p = subparsers.add_parser("generate", help="Generate one artifact")
    gen_p.add_argument("--data", type=str, help="JSON seed file for the record store")
    gen_p.add_argument("--user", type=str, required=True, help="Requesting user id")
    gen_p.add_argument("--job", type=str, required=True, help="Target job id")
    gen_p.add_argument("--kind", type=str, default="resume", help="Generation kind")
    gen_p.add_argument(
        "--option",
        action="append",
        metavar="KEY=VALUE",
        help="Generation option (repeatable)",
    )

    list_p = subparsers.add_parser("list", help="List a user's artifacts")
    list_p.add_argument("--user", type=str, required=True, help="User id")

    args = parser.parse_args()
    _setup_logging(args.verbose)

    if args.command == "serve":
        serve()
    elif args.command == "generate":
        try:
            options = _parse_options(args.option)
        except ValueError as exc:
            parser.error(str(exc))
        cfg = AppConfig(data_file=args.data) if args.data else AppConfig()
        sys.exit(generate(args.user, args.job, args.kind, options, config=cfg))
    elif args.command == "list":
        sys.exit(list_artifacts(args.user))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()

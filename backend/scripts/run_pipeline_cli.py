#!/usr/bin/env python3
"""
Run one source through the whole pipeline in-process and print its status.

Usage:
    python scripts/run_pipeline_cli.py <source_ref> [--export CLIP_ID ...] [--json]

Example:
    python scripts/run_pipeline_cli.py ~/Videos/talk.mp4
    python scripts/run_pipeline_cli.py "https://www.youtube.com/watch?v=..." --export sc_0003
"""
import argparse
import asyncio
import json
import logging
import sys

from clipforge.config import settings
from clipforge.db.database import async_session_maker, close_db, init_db
from clipforge.main import build_runtime
from clipforge.services.pipeline_service import PipelineService


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def run_pipeline(source_ref: str, export_clips=None, max_wait: float = 600.0) -> dict:
    """
    Enqueue ``source_ref`` and drain the stage queues inline.

    Returns:
        The aggregated pipeline status
    """
    await init_db()
    runtime = build_runtime(async_session_maker)
    service = PipelineService(runtime.queue)

    try:
        created = await service.create_pipeline(source_ref, meta={"origin": "cli"})
        root_id = created["jobId"]
        logger.info(f"Root {root_id} ({'new' if created['created'] else 'existing'})")

        processed = await runtime.drain(max_wait=max_wait)
        logger.info(f"Ran {processed} stage jobs")

        for clip_id in export_clips or []:
            await service.enqueue_export(root_id, clip_id)
        if export_clips:
            processed = await runtime.drain(max_wait=max_wait)
            logger.info(f"Ran {processed} export jobs")

        status = await service.get_status(root_id)
        status["exports"] = [r.to_dict() for r in await service.list_exports(root_id)]
        status["artifacts"] = await runtime.services.store.list(f"projects/{root_id}/", limit=500)
        return status
    finally:
        await close_db()


def print_status(status: dict):
    print(f"\nPipeline {status['id']}: {status['state']} ({status['progress']}%)")
    for stage, state in status["stages"].items():
        line = f"  {stage:<11} {state['status']:<10} {state['progress']:>3}%"
        if state.get("error"):
            line += f"  [{state.get('errorCode')}] {state['error']}"
        print(line)
    for record in status.get("exports", []):
        print(f"  export {record['clip_id']}: {record['status']} {record.get('platform_url') or ''}")
    print(f"  {len(status.get('artifacts', []))} artifacts in {settings.storage_backend} storage")


def main():
    parser = argparse.ArgumentParser(
        description="Run the ClipForge pipeline for one source",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("source_ref", help="Video URL, storage:// key or local path")
    parser.add_argument(
        "--export", "-e",
        nargs="*",
        default=None,
        metavar="CLIP_ID",
        help="Clip ids to publish after the chain finishes",
    )
    parser.add_argument(
        "--max-wait",
        type=float,
        default=600.0,
        help="Longest delayed retry to wait for, in seconds (default: 600)",
    )
    parser.add_argument("--json", action="store_true", help="Print the status as JSON")

    args = parser.parse_args()

    try:
        status = asyncio.run(run_pipeline(args.source_ref, args.export, args.max_wait))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)

    if args.json:
        print(json.dumps(status, indent=2))
    else:
        print_status(status)
    sys.exit(0 if status["state"] == "completed" else 1)


if __name__ == "__main__":
    main()

"""Command-line entry point for the PodcastVideoGenerator orchestrator."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Tuple

from podvgen.config import PROVIDER_IDS
from podvgen.errors import ConfigurationError, JobStoreError
from podvgen.pipeline import PodcastVideoGenerator
from podvgen.types import ASPECT_RATIOS, JobStatus, VideoJob


def read_dialogue(path: str | Path) -> List[Tuple[str, str]]:
    """Parse ``speaker: text`` lines; unlabelled lines continue the previous speaker."""
    lines: List[Tuple[str, str]] = []
    for raw in Path(path).read_text(encoding="utf-8").splitlines():
        text = raw.strip()
        if not text:
            continue
        speaker, sep, spoken = text.partition(":")
        if sep and speaker.strip() and " " not in speaker.strip():
            lines.append((speaker.strip(), spoken.strip()))
        elif lines:
            previous_speaker, previous_text = lines[-1]
            lines[-1] = (previous_speaker, f"{previous_text} {text}")
        else:
            raise ValueError(f"Dialogue must start with a 'speaker: text' line, got: {text!r}")
    return lines


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Generate a podcast video through a provider.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    submit = subparsers.add_parser("submit", help="Submit a new job from a dialogue file.")
    submit.add_argument("dialogue", help="Text file with one 'speaker: text' line per turn.")
    submit.add_argument("--provider", choices=PROVIDER_IDS, default=None, help="Provider to use.")
    submit.add_argument("--aspect-ratio", choices=ASPECT_RATIOS, default="landscape")
    submit.add_argument("--no-captions", action="store_true", help="Disable burned-in captions.")
    submit.add_argument("--template-id", default=None, help="Provider template to try first.")
    submit.add_argument("--title", default=None)
    submit.add_argument("--scene-prompt", default=None, help="Scene description for b-roll providers.")
    submit.add_argument("--seed-image", default=None, help="URL of the first frame for image-to-video.")
    _add_wait_options(submit)

    resume = subparsers.add_parser("resume", help="Resume the stored job.")
    _add_wait_options(resume)

    subparsers.add_parser("status", help="Print the stored job record.")
    subparsers.add_parser("reset", help="Forget the stored job.")
    return parser.parse_args(argv)


def _add_wait_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--no-wait", action="store_true", help="Return right after the current step.")
    parser.add_argument(
        "--max-wait",
        type=float,
        default=None,
        help="Stop polling after this many seconds; the job stays resumable.",
    )
    parser.add_argument(
        "--assemble",
        metavar="OUTPUT_DIR",
        default=None,
        help="Download and join the finished clips into OUTPUT_DIR.",
    )


def _print_job(job: VideoJob | None) -> None:
    if job is None:
        print("No stored job.")
        return
    summary = {
        "status": job.status.value,
        "provider": job.provider_id,
        "strategy": job.strategy.kind,
        "job_id": job.job_id,
        "result_url": job.result_url,
        "segments": f"{len(job.segment_urls)}/{len(job.segments)}" if job.segments else None,
        "retry_after_seconds": job.retry_after_seconds,
        "stuck": job.stuck or None,
        "error_kind": job.error_kind,
        "error_message": job.error_message,
    }
    print(json.dumps({k: v for k, v in summary.items() if v is not None}, ensure_ascii=False, indent=2))


def _finish(generator: PodcastVideoGenerator, args: argparse.Namespace) -> int:
    job = generator.job
    if not args.no_wait:
        job = generator.run_until_settled(max_wait_sec=args.max_wait)
    _print_job(job)
    if job is None:
        return 1
    if job.status is JobStatus.FAILED:
        return 2
    if args.assemble and job.status is JobStatus.COMPLETED:
        output = generator.assemble(args.assemble)
        print(f"Final video: {output}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point used by ``python run.py``."""
    args = parse_args(argv if argv is not None else sys.argv[1:])
    generator = PodcastVideoGenerator()

    if args.command == "status":
        try:
            job = generator.store.load()
        except JobStoreError as exc:
            print(f"Stored job is unreadable: {exc}", file=sys.stderr)
            return 1
        _print_job(job)
        return 0
    if args.command == "reset":
        generator.reset()
        print("Stored job cleared.")
        return 0
    if args.command == "resume":
        if generator.resume() is None:
            print("No stored job to resume.")
            return 1
        return _finish(generator, args)

    try:
        request = generator.build_request(
            read_dialogue(args.dialogue),
            aspect_ratio=args.aspect_ratio,
            captions=not args.no_captions,
            template_id=args.template_id,
            title=args.title,
            scene_prompt=args.scene_prompt,
            seed_image_url=args.seed_image,
        )
        generator.submit(request, provider_id=args.provider)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    return _finish(generator, args)


if __name__ == "__main__":
    raise SystemExit(main())

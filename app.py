#!/usr/bin/env python3
"""
Guest Card Generator
Composites a guest card (template, name, QR code, card class) for every guest
of an event, from the REST backend or from local files, and writes PNG/PDF.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from acquisition import ImageReadiness
from config import API_BASE_URL, API_TOKEN, STORAGE_BASE_URL
from errors import CardError, UploadRejected
from export import card_pdf_bytes, card_png_bytes
from session import STATUS_READY, CardDesignSession
from utils import safe_card_stem

logger = logging.getLogger(__name__)

MODE_MISSING = "missing"
MODE_ALL = "all"
FORMATS = ("png", "pdf")

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_ERROR = 2


@dataclass
class BatchResult:
    generated: int = 0
    skipped: int = 0
    failed: List[Tuple[str, str]] = field(default_factory=list)
    qr_warnings: List[Tuple[str, str]] = field(default_factory=list)
    files: List[Path] = field(default_factory=list)
    cards: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.generated + self.skipped + len(self.failed)


class CardBatchGenerator:
    """Generates cards for every guest of an event."""

    def __init__(
        self,
        backend: Any,
        event_id: Any = None,
        card_type_id: Any = None,
        output_dir: str = "output",
        mode: str = MODE_MISSING,
        formats: Sequence[str] = ("pdf",),
        **session_kwargs: Any,
    ):
        """
        Args:
            backend: CardApiClient or LocalCardBackend
            event_id: Event whose guests and card design are used
            card_type_id: Card type holding anchors, flags and text style
            output_dir: Directory to save generated cards
            mode: "missing" skips guests that already have a card, "all" regenerates
            formats: Any of "png", "pdf"
        """
        if mode not in (MODE_MISSING, MODE_ALL):
            raise ValueError(f"Unknown generation mode: {mode}")
        unknown = [f for f in formats if f not in FORMATS]
        if unknown:
            raise ValueError(f"Unknown output format(s): {', '.join(unknown)}")
        self.backend = backend
        self.event_id = event_id
        self.card_type_id = card_type_id
        # Don't mkdir here; the UI never writes to disk.
        self.output_dir = Path(output_dir)
        self.mode = mode
        self.formats = tuple(formats)
        self._session_kwargs = session_kwargs

    async def _run(self, write: bool) -> BatchResult:
        session = CardDesignSession(self.backend, **self._session_kwargs)
        await session.load(self.event_id, self.card_type_id)
        await session.wait_idle()
        if session.status != STATUS_READY:
            raise session.background_error or CardError("Event has no card design; upload a template first.")

        guests = list(session.guests)
        logger.info("Found %d guest(s)", len(guests))
        result = BatchResult()
        used_names: set = set()
        if write:
            self.output_dir.mkdir(exist_ok=True, parents=True)

        for i, guest in enumerate(guests, 1):
            if self.mode == MODE_MISSING and guest.has_card:
                result.skipped += 1
                continue
            logger.info("Generating card %d/%d: %s", i, len(guests), guest.name)

            session.select_guest(guest.guest_id)
            await session.wait_idle()
            if session.pipeline.qr.state is ImageReadiness.FAILED:
                # card still goes out with the QR placeholder
                message = str(session.pipeline.qr.error)
                logger.warning("QR failed for %s: %s", guest.name, message)
                result.qr_warnings.append((guest.name, message))
            if session.pipeline.qr.state is ImageReadiness.NOT_REQUESTED:
                logger.warning("%s has no QR code; card shows a placeholder", guest.name)

            card = session.surface.snapshot()
            stem = safe_card_stem(guest.name, used=used_names)
            outputs = {}
            if "png" in self.formats:
                outputs["png"] = card_png_bytes(card)
            if "pdf" in self.formats:
                outputs["pdf"] = card_pdf_bytes(card)

            if write:
                try:
                    for ext, data in outputs.items():
                        path = self.output_dir / f"{stem}.{ext}"
                        path.write_bytes(data)
                        result.files.append(path)
                except OSError as e:
                    logger.error("Error writing card for %s: %s", guest.name, e)
                    result.failed.append((guest.name, str(e)))
                    continue
            else:
                result.cards.append({"guest": guest, "stem": stem, **outputs})
            result.generated += 1

        logger.info(
            "Generated %d card(s), skipped %d, failed %d",
            result.generated, result.skipped, len(result.failed),
        )
        return result

    def generate_all_cards(self) -> BatchResult:
        """Generate cards and write them to output_dir."""
        return asyncio.run(self._run(write=True))

    def generate_in_memory(self) -> BatchResult:
        """Generate cards without touching the filesystem (result.cards)."""
        return asyncio.run(self._run(write=False))


def validate_template_file(path: str) -> str:
    """Validate a template image file; returns the matching tier as WxH."""
    from dimensions import validate_upload

    p = Path(path)
    mime_type, _ = mimetypes.guess_type(p.name)
    return str(validate_upload(p.read_bytes(), mime_type))


def _build_parser():
    import argparse

    parser = argparse.ArgumentParser(description="Generate guest cards with names and QR codes")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    sub = parser.add_subparsers(dest="command", required=True)

    def _batch_args(p):
        p.add_argument("-o", "--output", default="output", help="Output directory (default: output)")
        p.add_argument("--mode", choices=(MODE_MISSING, MODE_ALL), default=MODE_MISSING,
                       help="missing: only guests without a card (default); all: regenerate every card")
        p.add_argument("--format", dest="formats", choices=FORMATS, action="append",
                       help="Output format, may be repeated (default: pdf)")

    api = sub.add_parser("generate", help="Generate cards for an event from the REST backend")
    api.add_argument("--event-id", required=True)
    api.add_argument("--card-type-id", required=True)
    api.add_argument("--api-url", default=API_BASE_URL, help=f"API base URL (default: {API_BASE_URL})")
    api.add_argument("--storage-url", default=STORAGE_BASE_URL, help="Base URL for stored QR codes")
    api.add_argument("--token", default=API_TOKEN, help="Bearer token (default: $CARD_API_TOKEN)")
    _batch_args(api)

    local = sub.add_parser("generate-local", help="Generate cards from a guest list and a template file")
    local.add_argument("guests", help="Path to Excel (.xlsx) or CSV with guest data")
    local.add_argument("template", help="Path to the card template image")
    local.add_argument("--card-type", help="JSON file with positions, flags and text style")
    local.add_argument("--generate-missing-qr", action="store_true",
                       help="Create QR codes from invite codes for guests without one")
    _batch_args(local)

    check = sub.add_parser("validate", help="Check a template image against the allowed dimensions")
    check.add_argument("template", help="Path to the card template image")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    args = _build_parser().parse_args(argv)
    level = logging.WARNING if args.verbose == 0 else logging.INFO if args.verbose == 1 else logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.command == "validate":
        try:
            tier = validate_template_file(args.template)
        except OSError as e:
            print(f"Error reading template: {e}", file=sys.stderr)
            return EXIT_ERROR
        except UploadRejected as e:
            print(str(e), file=sys.stderr)
            return EXIT_ERROR
        print(f"OK: {args.template} is {tier}")
        return EXIT_OK

    if args.command == "generate":
        from data_loaders import CardApiClient

        backend = CardApiClient(base_url=args.api_url, token=args.token)
        generator = CardBatchGenerator(
            backend, args.event_id, args.card_type_id, args.output, args.mode,
            args.formats or ("pdf",), storage_base_url=args.storage_url,
        )
    else:
        from data_loaders import LocalCardBackend

        if not Path(args.template).exists():
            print(f"Error: Template image not found at {args.template}", file=sys.stderr)
            return EXIT_ERROR
        backend = LocalCardBackend(args.template, args.guests, args.card_type, args.generate_missing_qr)
        generator = CardBatchGenerator(backend, "local", "local", args.output, args.mode, args.formats or ("pdf",))

    try:
        result = generator.generate_all_cards()
    except CardError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    print(f"\nCompleted! Generated {result.generated} card(s) in '{generator.output_dir}' directory")
    if result.skipped:
        print(f"Skipped {result.skipped} guest(s) that already have a card")
    for name, message in result.qr_warnings:
        print(f"QR placeholder used for {name}: {message}", file=sys.stderr)
    for name, message in result.failed:
        print(f"Failed: {name}: {message}", file=sys.stderr)
    return EXIT_PARTIAL if result.failed else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

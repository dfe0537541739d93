#!/usr/bin/env python3
"""Audit a folder of vehicle photos and write the case report as JSON.

Usage:
 damage-audit --images_dir copartimages/vehicle1 --out case_report.json --benchmark
"""
from __future__ import annotations
import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from tqdm import tqdm

from .benchmark import GOLDEN_DATASET
from .config import AuditSettings
from .errors import AuditError
from .finalize.merge import exact_key_match, ontology_matcher
from .finalize.ontology import load_ontology
from .gateway import VisionBatchProvider
from .llm_clients.factory import create_vision_client
from .pipeline import audit_case
from .scheduler import CallbackQuotaObserver
from .utils.images import list_images, load_image_input, load_image_inputs
from .vin import extract_vin

logger = logging.getLogger("damage_audit")


def _report_wait(seconds: float) -> None:
    if seconds > 0:
        logger.warning("provider quota hit; pausing %.0fs before retrying", seconds)


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Audit vehicle damage photos")
    ap.add_argument("--images_dir", required=True, help="Directory with JPEG/PNG images of one vehicle")
    ap.add_argument("--out", default="case_report.json", help="Where to write JSON result")
    ap.add_argument("--vehicle_id", default=None)
    ap.add_argument("--vin_image", default=None,
                    help="Photo of the VIN plate; read to fill --vehicle_id when it is not given")
    ap.add_argument("--provider", choices=["gemini", "openai"], default=None,
                    help="Overrides MODEL_PROVIDER")
    ap.add_argument("--matcher", choices=["exact", "ontology"], default="exact",
                    help="Part-name matching used when consolidating across images")
    ap.add_argument("--benchmark", action="store_true", help="Score detections against the golden set")
    ap.add_argument("--log-level", default="INFO")
    args = ap.parse_args(argv)
    load_dotenv()

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        settings = AuditSettings.from_env()
        if args.provider:
            settings = AuditSettings(**{**settings.as_dict(), "provider": args.provider})
    except ValueError as exc:
        logger.error("invalid configuration: %s", exc)
        return 2

    paths = list_images(Path(args.images_dir))
    if not paths:
        logger.error("no images found in %s", args.images_dir)
        return 2

    matcher = exact_key_match
    if args.matcher == "ontology":
        try:
            matcher = ontology_matcher(load_ontology(settings.ontology_path))
        except (OSError, ValueError) as exc:
            logger.error("cannot load part ontology: %s", exc)
            return 2

    images = load_image_inputs(tqdm(paths, desc="Encoding images"),
                               settings.image_max_px, settings.image_jpeg_quality)

    try:
        client = create_vision_client(settings)
        vehicle_id = args.vehicle_id
        if vehicle_id is None and args.vin_image:
            vin_path = Path(args.vin_image)
            vehicle_id = extract_vin(client, load_image_input(vin_path, settings.image_max_px,
                                                              settings.image_jpeg_quality))
            logger.info("VIN read from %s: %s", vin_path.name, vehicle_id or "not found")
        provider = VisionBatchProvider(client)
        report = audit_case(
            images,
            provider,
            settings=settings,
            observer=CallbackQuotaObserver(_report_wait),
            ground_truth=GOLDEN_DATASET if args.benchmark else None,
            matcher=matcher,
            vehicle_id=vehicle_id,
        )
    except (AuditError, RuntimeError, OSError) as exc:
        logger.error("audit failed: %s", exc)
        return 1

    Path(args.out).write_text(json.dumps(report.to_json_dict(), indent=2), encoding="utf-8")
    logger.info("report written to %s (%d consolidated issues, total %.2f %s)",
                args.out, len(report.consolidated_issues), report.financials.grand_total,
                report.financials.currency)
    return 0


if __name__ == "__main__":
    sys.exit(main())

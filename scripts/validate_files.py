#!/usr/bin/env python3
"""
Offline validation of client/worker/task spreadsheets.

Reads CSV or XLSX files, detects the entity from each file name (or takes it
from --entity when a single file is given), runs the full validation pipeline
and optionally checks a rules.json document against the loaded tasks.

Usage:
    python scripts/validate_files.py data/clients.csv data/workers.csv data/tasks.xlsx
    python scripts/validate_files.py --format json data/*.csv
    python scripts/validate_files.py --rules rules.json data/tasks.csv
    python scripts/validate_files.py --entity clients export.xlsx
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from alchemist.ingest import detect_entity, read_path  # noqa: E402
from alchemist.validation import (  # noqa: E402
    ValidationError,
    parse_rule,
    validate_datasets,
    validate_rule,
    validate_rule_set,
)

logger = logging.getLogger("validate_files")


def load_files(paths: list[str], entity: str | None = None) -> dict[str, list[dict]]:
    datasets: dict[str, list[dict]] = {}
    for path in paths:
        target = entity or detect_entity(path)
        datasets[target] = read_path(path)
        logger.info("loaded %s as %s (%d rows)", path, target, len(datasets[target]))
    return datasets


def check_rules(path: str, datasets: dict[str, list[dict]]) -> list[ValidationError]:
    """Shape-check every rule in a rules.json document, then the rule set."""
    document = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(document, list):
        raise ValueError(f"{path}: rules document must be a JSON array")
    problems: list[ValidationError] = []
    rules = []
    for index, item in enumerate(document):
        if isinstance(item, dict) and item.get("type") == "weights":
            continue
        try:
            rule = parse_rule(item)
        except ValueError:
            problems.append(ValidationError("rules", index, "type", "Unrecognized rule"))
            continue
        message = validate_rule(rule, datasets)
        if message is not None:
            problems.append(ValidationError("rules", index, "config", message))
        rules.append(rule)
    return problems + validate_rule_set(rules)


def format_text_report(errors: list[ValidationError]) -> str:
    if not errors:
        return "No validation errors."
    lines = [f"{len(errors)} validation error(s):"]
    for item in errors:
        row = "table" if item.row_index < 0 else f"row {item.row_index + 1}"
        lines.append(f"  [{item.entity}] {row} {item.field}: {item.message}")
    return "\n".join(lines)


def format_json_report(errors: list[ValidationError]) -> str:
    return json.dumps([item.to_dict() for item in errors], indent=2)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Validate client/worker/task data files")
    parser.add_argument("files", nargs="+", help="CSV or XLSX files to validate")
    parser.add_argument(
        "--entity",
        choices=["clients", "workers", "tasks"],
        help="Entity of the file when its name does not say",
    )
    parser.add_argument("--rules", help="rules.json document to check against the loaded tasks")
    parser.add_argument("--format", choices=["text", "json"], default="text", help="Output format")
    parser.add_argument("--verbose", action="store_true", help="Log file loading")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    if args.entity and len(args.files) > 1:
        parser.error("--entity can only be used with a single file")

    try:
        datasets = load_files(args.files, args.entity)
    except ValueError as exc:
        print(f"error: {exc.args[0]}", file=sys.stderr)
        return 2

    errors = [item for entity_errors in validate_datasets(datasets).values() for item in entity_errors]
    if args.rules:
        try:
            errors.extend(check_rules(args.rules, datasets))
        except (OSError, ValueError) as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 2

    if args.format == "json":
        print(format_json_report(errors))
    else:
        print(format_text_report(errors))
    return 1 if errors else 0


if __name__ == "__main__":
    raise SystemExit(main())

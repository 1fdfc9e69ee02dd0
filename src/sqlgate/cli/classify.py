from __future__ import annotations

import argparse

from sqlgate.errors import ClassificationError
from sqlgate.policy.classifier import classify


def configure_parser(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("classify", help="Classify a SQL statement as read or write")
    parser.set_defaults(func=run_classify)
    parser.add_argument("sql", help="SQL text to classify")


def run_classify(args: argparse.Namespace) -> int:
    from rich.syntax import Syntax

    from sqlgate.cli.ui import console, print_error

    try:
        classified = classify(args.sql)
    except ClassificationError as e:
        print_error(type(e).__name__, str(e), tip="Submit exactly one SQL statement.")
        return 1

    style = "warning" if classified.requires_approval else "success"
    console.print(Syntax(classified.normalized, "sql", word_wrap=True))
    console.print(f"classification: [{style}]{classified.classification.value}[/{style}]")
    return 0

from sqlgate.policy.classifier import (
    Classification,
    ClassifiedStatement,
    classify,
    split_statements,
    strip_comments,
)

__all__ = [
    "Classification",
    "ClassifiedStatement",
    "classify",
    "split_statements",
    "strip_comments",
]

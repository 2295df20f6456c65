from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List


@dataclass(frozen=True)
class Issue:
    """A configuration problem found while loading or validating a file."""

    severity: str
    code: str
    message: str
    path: str = "/"


def has_errors(issues: Iterable[Issue]) -> bool:
    return any(issue.severity == "error" for issue in issues)


def to_lines(issues: Iterable[Issue]) -> List[str]:
    return [f"[{i.severity.upper()}] {i.code} {i.path}: {i.message}" for i in issues]


def issues_as_dicts(issues: Iterable[Issue]) -> List[Dict[str, str]]:
    return [asdict(issue) for issue in issues]

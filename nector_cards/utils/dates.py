"""Card validity dates."""

from datetime import date

EXPIRY_FORMAT = "%Y-%m-%d"


def compute_expiry(issue_date: date | None = None) -> date:
    """Return the date one calendar year after ``issue_date`` (default: today).

    29 February rolls over to 1 March when the following year is not a leap year.
    """
    if issue_date is None:
        issue_date = date.today()

    try:
        return issue_date.replace(year=issue_date.year + 1)
    except ValueError:
        return date(issue_date.year + 1, 3, 1)


def format_expiry(value: date) -> str:
    """Format a validity date as YYYY-MM-DD."""
    return value.strftime(EXPIRY_FORMAT)


def parse_expiry(value: str) -> date:
    """Parse a YYYY-MM-DD validity date, raising ValueError when malformed."""
    return date.fromisoformat(value)

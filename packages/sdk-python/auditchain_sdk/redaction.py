"""PII redaction for audit metadata."""

from typing import Any, Iterable, Mapping, Optional

# Compared against lower-cased metadata keys
DEFAULT_PII_KEYS = frozenset(
    {
        "name",
        "email",
        "address",
        "phone",
        "ssn",
        "dob",
        "studentname",
        "parentname",
    }
)


def build_denylist(extra_keys: Optional[Iterable[str]] = None) -> frozenset:
    """Default PII keys plus any configured extras, lower-cased."""
    extra = {key.lower() for key in (extra_keys or ())}
    return DEFAULT_PII_KEYS | extra


def redact(
    metadata: Optional[Mapping[str, Any]],
    denylist: frozenset = DEFAULT_PII_KEYS,
) -> dict[str, Any]:
    """Drop every top-level key whose lower-cased name is denylisted."""
    if not metadata:
        return {}
    return {key: value for key, value in metadata.items() if str(key).lower() not in denylist}

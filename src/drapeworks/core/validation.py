"""Input validation and sanitization for the try-on workflow.

Every ``check_*`` function is pure and returns a :class:`CheckResult` rather
than raising, so callers can surface the reason next to the offending input.
:func:`require_valid` turns a failed result into a :class:`ValidationError`
for call sites (such as the HTTP layer) that prefer exceptions.

Custom instruction text goes through two independent passes:

- :func:`check_prompt_for_risk` is advisory.  It flags phrases that tend to
  make the generation service alter garment geometry, but never blocks
  submission.
- :func:`sanitize_free_text` is mandatory.  It strips markup and template
  syntax before the text is embedded in the final instruction.
"""

import logging
import re
from dataclasses import dataclass

from drapeworks.core.files import UploadedFile

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """User-friendly validation error.

    The message is intended to be displayed directly to the user.
    """

    pass


@dataclass(frozen=True)
class CheckResult:
    """Outcome of a single input check."""

    valid: bool
    error: str | None = None


VALID = CheckResult(valid=True)


def require_valid(result: CheckResult) -> None:
    """Raise :class:`ValidationError` if *result* is a failed check."""
    if not result.valid:
        raise ValidationError(result.error or "Invalid input")


# ---------------------------------------------------------------------------
# Custom instruction risk scan
# ---------------------------------------------------------------------------

# Phrases that ask for a change of garment geometry.
BLOCKED_KEYWORDS = (
    "redesign",
    "reshape",
    "change silhouette",
    "make longer",
    "make shorter",
    "different neckline",
    "alter sleeves",
    "different style",
    "modern style",
    "western style",
    "replace with",
    "swap to",
    "change to different",
    "change neckline",
    "lengthen",
    "shorten",
    "resize",
    "restructure",
    "add sleeves",
    "remove sleeves",
    "change collar",
    "add collar",
)

# Ambiguous words that may or may not refer to geometry.
WARNING_KEYWORDS = (
    "change",
    "modify",
    "alter",
    "different",
    "transform",
    "convert",
    "restyle",
    "remodel",
    "adjust shape",
    "wider",
    "narrower",
    "tighter",
    "looser",
    "bigger",
    "smaller",
)

SEVERITY_BLOCKED = "blocked"
SEVERITY_WARNING = "warning"


@dataclass(frozen=True)
class PromptRisk:
    """A keyword hit in custom instruction text."""

    keyword: str
    message: str
    severity: str


def _find_spans(text: str, keyword: str) -> list[tuple[int, int]]:
    """Return every (start, end) occurrence of *keyword*, overlaps included."""
    spans = []
    start = text.find(keyword)
    while start != -1:
        spans.append((start, start + len(keyword)))
        start = text.find(keyword, start + 1)
    return spans


def _is_covered(span: tuple[int, int], covering: list[tuple[int, int]]) -> bool:
    return any(lo <= span[0] and span[1] <= hi for lo, hi in covering)


def check_prompt_for_risk(text: str) -> list[PromptRisk]:
    """Scan custom instruction text for geometry-changing language.

    Blocked phrases are reported once each.  A warning word is reported only
    if at least one of its occurrences falls outside every blocked-phrase
    occurrence, so "change silhouette" produces a single blocked hit rather
    than an additional warning for "change".

    Args:
        text: Raw custom instruction text.

    Returns:
        Risks in keyword-list order, blocked hits first.  Empty for empty or
        whitespace-only input.
    """
    if not text or not text.strip():
        return []

    lower = text.lower()
    risks: list[PromptRisk] = []
    blocked_spans: list[tuple[int, int]] = []

    for keyword in BLOCKED_KEYWORDS:
        spans = _find_spans(lower, keyword)
        if spans:
            blocked_spans.extend(spans)
            risks.append(
                PromptRisk(
                    keyword=keyword,
                    message=(
                        f'Your prompt contains "{keyword}" which may override geometry '
                        "preservation rules. Consider rewording to focus on texture/color only."
                    ),
                    severity=SEVERITY_BLOCKED,
                )
            )

    for keyword in WARNING_KEYWORDS:
        spans = _find_spans(lower, keyword)
        if any(not _is_covered(span, blocked_spans) for span in spans):
            risks.append(
                PromptRisk(
                    keyword=keyword,
                    message=(
                        f'"{keyword}" may cause unintended changes. '
                        "Ensure it refers to color/texture, not geometry."
                    ),
                    severity=SEVERITY_WARNING,
                )
            )

    if risks:
        logger.debug(f"Prompt risk scan flagged {len(risks)} keyword(s)")
    return risks


# ---------------------------------------------------------------------------
# Free-text sanitization
# ---------------------------------------------------------------------------

MAX_FREE_TEXT_LENGTH = 500

# Applied in order, repeatedly, until the text stops changing.  A single pass
# is not enough: "javajavascript:script:" only reveals its payload after the
# inner match is removed.
_STRIP_PATTERNS = (
    re.compile(r"<[^>]*>"),
    re.compile(r"\$\{\{[^}]*\}\}"),
    re.compile(r"\$?\{[^}]*\}"),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"\bon\w+\s*=", re.IGNORECASE),
    re.compile(r"\\"),
)


def sanitize_free_text(text: str, max_length: int = MAX_FREE_TEXT_LENGTH) -> str:
    """Strip injection-prone syntax from user free text.

    Removes markup tags, ``{...}`` / ``${...}`` / ``${{...}}`` placeholders,
    the ``javascript:`` scheme, inline event-handler attributes and all
    backslashes, then truncates and trims.

    The result is idempotent: ``sanitize_free_text(sanitize_free_text(x))``
    equals ``sanitize_free_text(x)``, and its length never exceeds
    *max_length*.

    Args:
        text: Raw user text.
        max_length: Maximum length of the returned text.

    Returns:
        Sanitized text.
    """
    previous = None
    sanitized = text
    while sanitized != previous:
        previous = sanitized
        for pattern in _STRIP_PATTERNS:
            sanitized = pattern.sub("", sanitized)

    # Truncate before trimming so a cut that lands on whitespace cannot leave
    # a trailing space behind.
    return sanitized[:max_length].strip()


def check_custom_text(text: str, max_length: int = MAX_FREE_TEXT_LENGTH) -> CheckResult:
    """Check that raw custom instruction text fits the length limit."""
    if len(text) > max_length:
        return CheckResult(
            False,
            f"Custom instructions are too long ({len(text)} characters). "
            f"Maximum is {max_length} characters.",
        )
    return VALID


# ---------------------------------------------------------------------------
# File checks
# ---------------------------------------------------------------------------

IMAGE_MIME_TYPES = ("image/jpeg", "image/png", "image/webp")
MAX_IMAGE_BYTES = 20 * 1024 * 1024

DOCUMENT_MIME_TYPES = ("application/pdf",)
MAX_DOCUMENT_BYTES = 50 * 1024 * 1024


def check_image_file(file: UploadedFile) -> CheckResult:
    """Accept JPEG, PNG and WEBP images up to 20 MiB."""
    if file.mime_type not in IMAGE_MIME_TYPES:
        return CheckResult(False, "Only JPG, PNG, and WEBP images are accepted.")
    if file.size > MAX_IMAGE_BYTES:
        return CheckResult(False, "Image must be under 20MB.")
    return VALID


def check_document_file(file: UploadedFile) -> CheckResult:
    """Accept PDF documents up to 50 MiB."""
    if file.mime_type not in DOCUMENT_MIME_TYPES:
        return CheckResult(False, "Only PDF files are accepted.")
    if file.size > MAX_DOCUMENT_BYTES:
        return CheckResult(False, "PDF must be under 50MB.")
    return VALID


# ---------------------------------------------------------------------------
# Design number text
# ---------------------------------------------------------------------------

MAX_DESIGN_NUMBER_LENGTH = 15

_DESIGN_NUMBER_FORBIDDEN = re.compile(r"""[<>{}()\[\]@#$%^&*+=|\\/"'`;:!?~]""")
_DESIGN_NUMBER_ALLOWED = re.compile(r"[A-Za-z0-9\-_ ]+")


def check_design_number_text(value: str) -> CheckResult:
    """Validate a user-supplied design number.

    The forbidden-character check runs before the allow-list check so the
    common case (a stray ``#`` or ``/``) gets the more specific message.
    """
    if not value or not value.strip():
        return CheckResult(False, "Design number cannot be empty.")
    if len(value) > MAX_DESIGN_NUMBER_LENGTH:
        return CheckResult(False, f"Maximum {MAX_DESIGN_NUMBER_LENGTH} characters allowed.")
    if _DESIGN_NUMBER_FORBIDDEN.search(value):
        return CheckResult(False, "Special characters are not allowed.")
    if not _DESIGN_NUMBER_ALLOWED.fullmatch(value):
        return CheckResult(False, "Only letters, numbers, hyphens, and underscores allowed.")
    return VALID

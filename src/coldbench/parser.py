"""Parser for Lambda REPORT lines."""

import base64
import binascii
import re

from coldbench.models import InvocationReport

REPORT_PREFIX = "REPORT RequestId: "

# Example: REPORT RequestId: abc-123	Duration: 45.67 ms	Billed Duration: 46 ms
#          Memory Size: 512 MB	Max Memory Used: 128 MB	Init Duration: 234.56 ms
REPORT_PATTERN = re.compile(r"REPORT\s+RequestId:\s*(?P<request_id>\S+)")
FIELD_PATTERN = re.compile(r"^\s*(?P<name>[A-Za-z ]+?):\s*(?P<value>\S*?)\s*(?:ms|MB)?\s*$")


class LogParseError(ValueError):
    """No REPORT line could be found in a log payload."""

    pass


def _to_float(value: str | None) -> float:
    # Malformed numbers count as zero so a bad line never stops a run
    try:
        return float(value) if value else 0.0
    except ValueError:
        return 0.0


def _to_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(float(value))
    except ValueError:
        return 0


def report_prefix(request_id: str) -> str:
    """Return the exact prefix of the REPORT line for a request id."""
    return f"{REPORT_PREFIX}{request_id}"


def is_report_for(message: str, request_id: str) -> bool:
    """Return True if the message is the REPORT line of this request."""
    prefix = report_prefix(request_id)
    if not message.startswith(prefix):
        return False
    rest = message[len(prefix):]
    return not rest or rest[0].isspace()


def parse_report_line(message: str) -> InvocationReport | None:
    """
    Parse a log message containing a REPORT line.

    Fields are tab separated. Missing or malformed numeric fields are
    reported as zero.

    Returns:
        InvocationReport if the message contains a REPORT line, None otherwise
    """
    match = REPORT_PATTERN.search(message)
    if not match:
        return None

    fields: dict[str, str] = {}
    for part in message[match.end():].split("\t"):
        field_match = FIELD_PATTERN.match(part)
        if field_match:
            fields[field_match.group("name").strip()] = field_match.group("value")

    return InvocationReport(
        request_id=match.group("request_id"),
        duration_ms=_to_float(fields.get("Duration")),
        init_duration_ms=_to_float(fields.get("Init Duration")),
        billed_duration_ms=_to_int(fields.get("Billed Duration")),
        memory_size_mb=_to_int(fields.get("Memory Size")),
        max_memory_used_mb=_to_int(fields.get("Max Memory Used")),
    )


def parse_init_duration(message: str) -> float:
    """Return the Init Duration of a REPORT line, or 0 when it is absent."""
    report = parse_report_line(message)
    return report.init_duration_ms if report else 0.0


def decode_log_result(payload: str | bytes | None) -> str:
    """
    Decode the base64 log tail returned by a tailed Lambda invocation.

    Raises:
        LogParseError: If the payload is not valid base64
    """
    if not payload:
        return ""
    try:
        return base64.b64decode(payload, validate=True).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError) as e:
        raise LogParseError("Log result is not valid base64") from e


def find_report(log_text: str) -> InvocationReport:
    """
    Find the REPORT line in an invocation's own log text.

    Raises:
        LogParseError: If the log text has no REPORT line
    """
    for line in log_text.splitlines():
        report = parse_report_line(line)
        if report:
            return report
    raise LogParseError("No REPORT line found in log output")


def extract_init(log_text: str) -> tuple[float, float]:
    """
    Extract duration and init duration from an invocation's log text.

    Returns:
        (duration_ms, init_duration_ms), init being 0 for warm invocations
    """
    report = find_report(log_text)
    return report.duration_ms, report.init_duration_ms

#!/usr/bin/env python3
"""Security & PII gate for source files.

Fails if:
- print( found in runtime code (src/**)
- A logger call line mentions sender/body/identity/credential names without
  going through safe_log_context/redact_value

Usage:
    python scripts/gate_security_pii.py
"""

import re
import sys
from pathlib import Path

# Names that must not reach a logger call without redaction
SENSITIVE_KEYWORDS = (
    "webhook.sender",
    "webhook.body",
    "profile_name",
    "channel_identity",
    "to_identity",
    "auth_token",
    "api_key",
    "media_url",
    "request.body",
    "request.json",
)

PRINT_PATTERN = re.compile(r"\bprint\s*\(")

LOGGER_CALL_PATTERN = re.compile(
    r"logger\.(debug|info|warning|error|critical|exception)\s*\("
)

REDACTION_PATTERNS = (
    "safe_log_context",
    "redact_value",
    "redact_string",
    "hash_identifier",
)


def check_file(filepath: Path) -> list[str]:
    """Check a single file. Returns a list of error messages."""
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []

    errors = []
    for lineno, line in enumerate(content.splitlines(), start=1):
        code_part = line.split("#", 1)[0]
        if not code_part.strip():
            continue

        if PRINT_PATTERN.search(code_part):
            errors.append(f"{filepath}:{lineno}: print() not allowed in runtime code")

        if LOGGER_CALL_PATTERN.search(code_part):
            lowered = code_part.lower()
            has_redaction = any(rp in code_part for rp in REDACTION_PATTERNS)
            for keyword in SENSITIVE_KEYWORDS:
                if keyword in lowered and not has_redaction:
                    errors.append(
                        f"{filepath}:{lineno}: logger call with '{keyword}' "
                        "must use redaction (safe_log_context/hash_identifier)"
                    )

    return errors


def main(src_dir: Path | None = None) -> int:
    """Run the gate on the src directory."""
    if src_dir is None:
        src_dir = Path("src")
        if not src_dir.exists():
            src_dir = Path(__file__).parent.parent / "src"

    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))

    if all_errors:
        sys.stderr.write("PII gate FAILED - violations found:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("PII gate PASSED - no violations found\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())

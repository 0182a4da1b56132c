#!/usr/bin/env python3
"""Gate G2: Security & PII check for source files.

Fails if:
- print( found in runtime code (src/**)
- A logger call passes extra_fields not built by safe_log_context
- safe_log_context receives a sender number, message text, request body or
  credential without hash_identifier/id_prefix/len around it
- A logger message f-string interpolates one of those values

Usage:
    python scripts/gate_security_pii.py
"""

import ast
import sys
from pathlib import Path

LOG_METHODS = {"debug", "info", "warning", "error", "critical", "exception"}

# Identifiers that hold PII or secrets and must never be logged as-is
SENSITIVE_NAMES = {
    "sender_id",
    "sender_name",
    "text",
    "body",
    "raw_body",
    "body_bytes",
    "payload",
    "access_token",
    "app_secret",
    "verify_token",
    "to",
    "_to",
    "recipient_id",
}

# Wrappers that make a sensitive value safe to log
SAFE_WRAPPERS = {"hash_identifier", "id_prefix", "len", "bool"}


def _terminal_name(node: ast.AST) -> str | None:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    return None


def _call_name(node: ast.AST) -> str | None:
    return _terminal_name(node.func) if isinstance(node, ast.Call) else None


def _is_logger_call(node: ast.Call) -> bool:
    func = node.func
    return (
        isinstance(func, ast.Attribute)
        and func.attr in LOG_METHODS
        and _terminal_name(func.value) == "logger"
    )


def _check_logger_call(node: ast.Call) -> list[str]:
    errors = []

    if node.args and isinstance(node.args[0], ast.JoinedStr):
        for part in node.args[0].values:
            if isinstance(part, ast.FormattedValue):
                name = _terminal_name(part.value)
                if name in SENSITIVE_NAMES:
                    errors.append(f"log message interpolates '{name}'")

    for keyword in node.keywords:
        if keyword.arg != "extra":
            continue
        if not isinstance(keyword.value, ast.Dict):
            errors.append("extra= must be a dict literal with extra_fields")
            continue
        for key, value in zip(keyword.value.keys, keyword.value.values):
            if not (isinstance(key, ast.Constant) and key.value == "extra_fields"):
                errors.append("extra= may only carry extra_fields")
                continue
            # A Name is a context already built with safe_log_context
            if _call_name(value) != "safe_log_context" and not isinstance(value, ast.Name):
                errors.append("extra_fields must be built with safe_log_context")

    return errors


def _check_safe_context_call(node: ast.Call) -> list[str]:
    errors = []
    for keyword in node.keywords:
        value = keyword.value
        if _call_name(value) in SAFE_WRAPPERS:
            continue
        name = _terminal_name(value)
        if name in SENSITIVE_NAMES:
            errors.append(f"safe_log_context receives raw '{name}' (wrap it in hash_identifier/len)")
    return errors


def check_file(filepath: Path) -> list[str]:
    """Check a single file for violations. Returns list of error messages."""
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []  # Skip binary files

    try:
        tree = ast.parse(content, filename=str(filepath))
    except SyntaxError as e:
        return [f"{filepath}:{e.lineno}: cannot parse ({e.msg})"]

    errors = []
    for node in ast.walk(tree):
        if not isinstance(node, ast.Call):
            continue

        if isinstance(node.func, ast.Name) and node.func.id == "print":
            errors.append(f"{filepath}:{node.lineno}: print() not allowed in runtime code")
            continue

        if _is_logger_call(node):
            problems = _check_logger_call(node)
        elif _call_name(node) == "safe_log_context":
            problems = _check_safe_context_call(node)
        else:
            continue

        errors.extend(f"{filepath}:{node.lineno}: {problem}" for problem in problems)

    return errors


def main() -> int:
    """Run gate check on src directory."""
    src_dir = Path("src")

    if not src_dir.exists():
        # Try from project root
        src_dir = Path(__file__).parent.parent / "src"

    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors: list[str] = []

    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))

    if all_errors:
        sys.stderr.write("Gate G2 FAILED - Security/PII violations found:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("Gate G2 PASSED - No security/PII violations found\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""PII gate: logging check for the devisly package (src/devisly).

Parses each module and fails if:
- print() is called anywhere in runtime code
- a logger call passes extra= in any shape other than {"extra_fields": ...}
- extra_fields is not built by safe_log_context (a call, a name bound to one,
  or a dict spreading one plus values that carry no sensitive data)
- message text, transcripts, raw payloads or tool arguments reach
  safe_log_context (it redacts phones and emails, not free text)
- phones, payloads or message text are passed as logger message arguments

Sizes, types and hashes of sensitive values are fine: len(), type(),
sorted(), hash_identifier() and id_prefix() hide what they wrap.

Usage:
    python scripts/gate_security_pii.py
"""

import ast
import sys
from pathlib import Path

LOG_METHODS = frozenset({"debug", "info", "warning", "error", "critical", "exception"})

# Free text from the user or the model; never logged, even through safe_log_context
CONTENT_NAMES = frozenset({
    "raw_payload",
    "raw",
    "content",
    "text",
    "audio_transcription",
    "transcript",
    "arguments",
    "tool_arguments",
})

# Identifiers safe_log_context redacts, but nothing else does
IDENTITY_NAMES = frozenset({
    "phone",
    "phone_number",
    "sender_phone",
    "email",
    "contact_email",
    "siret",
    "payload",
    "body",
})

SENSITIVE_NAMES = CONTENT_NAMES | IDENTITY_NAMES

SAFE_WRAPPERS = frozenset({"len", "type", "sorted", "hash_identifier", "id_prefix"})


def _call_name(node: ast.AST) -> str:
    if not isinstance(node, ast.Call):
        return ""
    if isinstance(node.func, ast.Name):
        return node.func.id
    if isinstance(node.func, ast.Attribute):
        return node.func.attr
    return ""


def _referenced_names(node: ast.AST) -> set[str]:
    """Names and attribute names read by node, skipping safe wrappers."""
    found: set[str] = set()
    stack = [node]
    while stack:
        current = stack.pop()
        if _call_name(current) in SAFE_WRAPPERS:
            continue
        if isinstance(current, ast.Name):
            found.add(current.id)
        elif isinstance(current, ast.Attribute):
            found.add(current.attr)
        stack.extend(ast.iter_child_nodes(current))
    return found


def _is_logger_call(node: ast.Call) -> bool:
    func = node.func
    return (
        isinstance(func, ast.Attribute)
        and func.attr in LOG_METHODS
        and isinstance(func.value, ast.Name)
        and func.value.id.endswith("logger")
    )


def _context_names(tree: ast.AST) -> set[str]:
    """Variables assigned straight from a safe_log_context() call."""
    names: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Assign) and _call_name(node.value) == "safe_log_context":
            names.update(t.id for t in node.targets if isinstance(t, ast.Name))
    return names


def _is_safe_context(node: ast.AST, context_names: set[str]) -> bool:
    if _call_name(node) == "safe_log_context":
        return True
    return isinstance(node, ast.Name) and node.id in context_names


def _check_extra(extra: ast.AST, context_names: set[str]) -> str | None:
    if not (
        isinstance(extra, ast.Dict)
        and len(extra.keys) == 1
        and isinstance(extra.keys[0], ast.Constant)
        and extra.keys[0].value == "extra_fields"
    ):
        return 'logger extra must be {"extra_fields": safe_log_context(...)}'

    fields = extra.values[0]
    if _is_safe_context(fields, context_names):
        return None
    if not isinstance(fields, ast.Dict):
        return "extra_fields must be built by safe_log_context"

    for key, value in zip(fields.keys, fields.values):
        if key is None:
            if not _is_safe_context(value, context_names):
                return "extra_fields spreads a dict not built by safe_log_context"
            continue
        leaked = _referenced_names(value) & SENSITIVE_NAMES
        if leaked:
            return f"extra_fields value uses '{sorted(leaked)[0]}' without safe_log_context"
    return None


def check_file(filepath: Path) -> list[str]:
    """Check a single module. Returns list of error messages."""
    try:
        source = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []
    try:
        tree = ast.parse(source, filename=str(filepath))
    except SyntaxError as e:
        return [f"{filepath}:{e.lineno}: cannot parse module"]

    context_names = _context_names(tree)
    found: list[tuple[int, str]] = []

    for node in ast.walk(tree):
        if not isinstance(node, ast.Call):
            continue
        name = _call_name(node)

        if isinstance(node.func, ast.Name) and name == "print":
            found.append((node.lineno, "print() not allowed in runtime code"))

        elif name == "safe_log_context":
            for value in [*node.args, *(kw.value for kw in node.keywords)]:
                for leaked in sorted(_referenced_names(value) & CONTENT_NAMES):
                    found.append((node.lineno, f"'{leaked}' passed to safe_log_context (log its length or a hash)"))

        elif _is_logger_call(node):
            for arg in node.args:
                for leaked in sorted(_referenced_names(arg) & SENSITIVE_NAMES):
                    found.append((node.lineno, f"logger call with '{leaked}' must use redaction (safe_log_context)"))
            for kw in node.keywords:
                if kw.arg == "extra":
                    problem = _check_extra(kw.value, context_names)
                    if problem:
                        found.append((node.lineno, problem))

    return [f"{filepath}:{lineno}: {message}" for lineno, message in sorted(found)]


def check_tree(src_dir: Path) -> list[str]:
    """Check every module under src_dir."""
    errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        errors.extend(check_file(pyfile))
    return errors


def main() -> int:
    """Run gate check on the devisly package."""
    src_dir = Path(__file__).resolve().parent.parent / "src" / "devisly"
    if not src_dir.exists():
        sys.stderr.write("Error: src/devisly not found\n")
        return 1

    all_errors = check_tree(src_dir)

    if all_errors:
        sys.stderr.write("PII gate FAILED - Security/PII violations found:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("PII gate PASSED - No security/PII violations found\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Runs the PII logging gate against the source tree."""

import importlib.util
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture(scope="module")
def gate():
    spec = importlib.util.spec_from_file_location(
        "gate_security_pii", ROOT / "scripts" / "gate_security_pii.py"
    )
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_source_tree_is_clean(gate):
    errors = []
    for pyfile in sorted((ROOT / "src").rglob("*.py")):
        errors.extend(gate.check_file(pyfile))
    assert errors == []


def test_flags_raw_sender_in_log_context(gate, tmp_path):
    source = tmp_path / "bad.py"
    source.write_text(
        "logger.info(\n"
        "    'inbound',\n"
        "    extra={'extra_fields': safe_log_context(sender=message.sender_id)},\n"
        ")\n"
    )

    errors = gate.check_file(source)

    assert len(errors) == 1
    assert "sender_id" in errors[0]


def test_flags_unredacted_extra_fields(gate, tmp_path):
    source = tmp_path / "bad.py"
    source.write_text("logger.info('x', extra={'extra_fields': {'text': text}})\n")

    assert any("safe_log_context" in e for e in gate.check_file(source))


def test_flags_print_and_fstring(gate, tmp_path):
    source = tmp_path / "bad.py"
    source.write_text("print('debug')\nlogger.debug(f'got {body}')\n")

    errors = gate.check_file(source)

    assert len(errors) == 2


def test_hashed_values_pass(gate, tmp_path):
    source = tmp_path / "good.py"
    source.write_text(
        "logger.info(\n"
        "    'sent',\n"
        "    extra={'extra_fields': safe_log_context(\n"
        "        to_hash=hash_identifier(to), text_len=len(text)\n"
        "    )},\n"
        ")\n"
    )

    assert gate.check_file(source) == []

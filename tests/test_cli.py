# tests/test_cli.py
"""
End-to-end tests for the command-line front end.
"""

import io

from tests.conftest import (
    S,
    add,
    discard,
    end,
    jump,
    label,
    mul,
    print_char,
    print_num,
    program,
    push,
    read_num,
    retrieve,
)
from wspace import run_cli


def test_runs_literal_source(capsys):
    code = run_cli(["-source", program(push(6), push(7), add(), print_num(), end())])
    captured = capsys.readouterr()
    assert code == 0
    assert captured.out == "13"
    assert captured.err == ""


def test_runs_file_with_comments(tmp_path, capsys):
    body = "".join(push(ord(ch)) + print_char() for ch in "ok") + end()
    path = tmp_path / "ok.ws"
    path.write_text("".join(ch + "." for ch in body), encoding="utf-8")
    assert run_cli([str(path)]) == 0
    assert capsys.readouterr().out == "ok"


def test_file_with_undecodable_comment_bytes(tmp_path, capsys):
    path = tmp_path / "latin1.ws"
    path.write_bytes(b"caf\xe9" + program(push(5), print_num(), end()).encode("utf-8"))
    assert run_cli([str(path)]) == 0
    captured = capsys.readouterr()
    assert captured.out == "5"
    assert captured.err == ""


def test_reads_program_from_stdin(monkeypatch, capsys):
    source = program(push(5), print_num()).encode("utf-8")
    monkeypatch.setattr("sys.stdin", io.TextIOWrapper(io.BytesIO(source)))
    assert run_cli(["-"]) == 0
    assert capsys.readouterr().out == "5"


def test_stdin_with_undecodable_comment_bytes(monkeypatch, capsys):
    source = b"\xff\xfe" + program(push(7), print_num()).encode("utf-8")
    monkeypatch.setattr("sys.stdin", io.TextIOWrapper(io.BytesIO(source)))
    assert run_cli([]) == 0
    assert capsys.readouterr().out == "7"


def test_program_reads_stdin(tmp_path, monkeypatch, capsys):
    path = tmp_path / "double.ws"
    path.write_text(program(read_num(), push(2), mul(), print_num()), encoding="utf-8")
    monkeypatch.setattr("sys.stdin", io.StringIO("12\n"))
    assert run_cli([str(path)]) == 0
    assert capsys.readouterr().out == "24"


def test_missing_file(tmp_path, capsys):
    assert run_cli([str(tmp_path / "absent.ws")]) == 1
    assert "Failed to read" in capsys.readouterr().err


def test_source_flag_requires_program(capsys):
    assert run_cli(["-source"]) == 1
    assert "-source requires a program string" in capsys.readouterr().err


def test_lex_error(capsys):
    assert run_cli(["-source", "\n\n "]) == 1
    err = capsys.readouterr().err
    assert err.startswith("LexError: Invalid flow operation")
    assert "<string>:2:1" in err


def test_runtime_error_prints_traceback(capsys):
    code = run_cli(["-source", program(push(1), print_num(), push(99), retrieve())])
    captured = capsys.readouterr()
    assert code == 1
    assert captured.out == "1"
    assert captured.err.startswith("Traceback (most recent call last):")
    assert "UndefinedHeapAddress: Heap address 99 was never stored (rule: heap.retrieve)" in captured.err


def test_traceback_json(capsys):
    assert run_cli(["-source", discard(), "--traceback-json"]) == 1
    err = capsys.readouterr().err
    assert '"type": "EmptyStack"' in err


def test_verbose_traceback(capsys):
    assert run_cli(["-source", program(push(4), push(0), retrieve()), "--verbose"]) == 1
    err = capsys.readouterr().err
    assert "Stack (top last): [4]" in err
    assert "Recent steps:" in err


def test_trace(capsys):
    assert run_cli(["-source", program(push(1), print_num()), "--trace"]) == 0
    captured = capsys.readouterr()
    assert captured.out == "1"
    assert captured.err.splitlines() == ["    0 stack push 1", "    1 io print_num"]


def test_max_steps(capsys):
    assert run_cli(["-source", program(label(S), jump(S)), "--max-steps", "50"]) == 1
    assert "StepLimitExceeded" in capsys.readouterr().err

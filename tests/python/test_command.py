"""Unit tests for uac2_rate_follower.command."""

from __future__ import annotations

import logging

import pytest

from uac2_rate_follower.command import (
    CommandTemplate,
    command_to_string,
    kill_child,
    spawn_child,
)
from uac2_rate_follower.errors import ConfigurationError


def test_parse_splits_program_and_args() -> None:
    tmpl = CommandTemplate.parse("alsaloop -vv -r {R} --latency=1000")
    assert tmpl.program == "alsaloop"
    assert tmpl.args == ("-vv", "-r", "{R}", "--latency=1000")


def test_parse_honours_quotes() -> None:
    tmpl = CommandTemplate.parse("sh -c 'echo rate={R}'")
    assert tmpl.args == ("-c", "echo rate={R}")


def test_parse_empty_command_raises() -> None:
    with pytest.raises(ConfigurationError):
        CommandTemplate.parse("   ")


def test_render_replaces_placeholder_in_every_token() -> None:
    tmpl = CommandTemplate("loop", ("-r", "{R}", "--tag=r{R}-{R}", "-f", "S32_LE"))
    assert tmpl.render(44100) == [
        "loop",
        "-r",
        "44100",
        "--tag=r44100-44100",
        "-f",
        "S32_LE",
    ]
    # template itself is not modified
    assert tmpl.args[1] == "{R}"


def test_command_to_string_quotes() -> None:
    assert command_to_string(["sh", "-c", "echo hi"]) == "sh -c 'echo hi'"


def test_spawn_child_passes_rendered_command(fake_popen) -> None:
    proc = spawn_child(CommandTemplate("loop", ("-r", "{R}")), 48000, popen=fake_popen)
    assert proc is fake_popen.processes[0]
    assert proc.cmd == ["loop", "-r", "48000"]


def test_spawn_child_failure_returns_none(fake_popen, caplog) -> None:
    fake_popen.spawn_error = FileNotFoundError(2, "No such file", "loop")
    caplog.set_level(logging.WARNING, logger="uac2_rate_follower.command")
    assert spawn_child(CommandTemplate("loop", ("-r", "{R}")), 48000, popen=fake_popen) is None
    assert "Cmd failed" in caplog.text


def test_kill_child_terminates_and_reaps(fake_popen) -> None:
    proc = fake_popen(["loop", "-r", "48000"])
    kill_child(proc, grace_sec=0.1)
    assert proc.terminate_calls == 1
    assert proc.kill_calls == 0
    assert fake_popen.live == 0


def test_kill_child_escalates_to_sigkill(fake_popen) -> None:
    proc = fake_popen(["loop", "-r", "48000"])
    proc.ignore_terminate = True
    kill_child(proc, grace_sec=0.01)
    assert proc.terminate_calls == 1
    assert proc.kill_calls == 1
    assert proc.returncode == -9


def test_kill_child_already_exited_is_benign(fake_popen) -> None:
    proc = fake_popen(["loop", "-r", "48000"])
    proc._exit(0)
    kill_child(proc)
    assert proc.terminate_calls == 0


def test_kill_child_process_lookup_error_is_benign(fake_popen) -> None:
    proc = fake_popen(["loop", "-r", "48000"])

    def _gone() -> None:
        proc._exit(0)
        raise ProcessLookupError()

    proc.terminate = _gone
    kill_child(proc)
    assert proc.returncode == 0


def test_kill_child_other_os_error_propagates(fake_popen) -> None:
    proc = fake_popen(["loop", "-r", "48000"])
    proc.terminate_error = PermissionError(1, "Operation not permitted")
    with pytest.raises(PermissionError):
        kill_child(proc)

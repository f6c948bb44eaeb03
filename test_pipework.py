# coding=UTF-8

import errno
import os
import sys
import tempfile
import threading
import time
from pathlib import Path

from pytest import raises

import pipework
from pipework import (
    DecodeError,
    Null,
    OwnedHandle,
    SpawnError,
    StatusError,
    StreamError,
    cmd,
    sh,
)
from pipework import forwarding
from pipework.forwarding import DaemonicThread

NEWLINE = os.linesep.encode()
MISSING_PROGRAM = "pipework_missing_program_abc123"

# Child programs written in Python, so the suite only needs the interpreter
# that runs it.
# --------------------------------------------------------------------------


def py(code, *args):
    return cmd(sys.executable, "-c", code, *args)


def exits_with(code):
    return py("import sys; sys.exit({})".format(code))


def succeeds():
    return exits_with(0)


def fails():
    return exits_with(1)


def copy_stdin():
    return py(
        "import sys, shutil; shutil.copyfileobj(sys.stdin.buffer, sys.stdout.buffer)"
    )


def say(*words):
    return py('import sys; print(" ".join(sys.argv[1:]))', *words)


def say_err(*words):
    return py('import sys; print(" ".join(sys.argv[1:]), file=sys.stderr)', *words)


def emit(raw):
    return py("import sys; sys.stdout.buffer.write({!r})".format(raw))


def nap(seconds):
    return py("import time; time.sleep({})".format(seconds))


def take_bytes(count):
    # os.read, so that nothing past the first `count` bytes is consumed.
    return py("import os; os.write(1, os.read(0, {}))".format(count))


def print_cwd():
    return py("import os; print(os.getcwd())")


def print_env(name):
    return py("import os; print(os.environ.get({!r}, ''))".format(name))


def substitute(old, new):
    code = "import sys; sys.stdout.write(sys.stdin.read().replace({!r}, {!r}))"
    return py(code.format(old, new))


def each_char_to_y():
    return py("import sys; sys.stdout.write('y' * len(sys.stdin.read().strip()))")


def temp_file(contents=None):
    fd, path = tempfile.mkstemp()
    os.close(fd)
    if contents is not None:
        with open(path, "w") as f:
            f.write(contents)
    return path


def read_text(path):
    with open(path) as f:
        return f.read()


def fresh_dir():
    # realpath, because on macOS the temp dir sits behind a symlink.
    return os.path.realpath(tempfile.mkdtemp())


# Running and reading
# -------------------


def test_read():
    assert "hello world" == say("hello", "world").read()
    assert isinstance(say("text").read(), str)


def test_sh():
    assert "hi" == sh("echo hi").read()


def test_run_returns_output():
    output = say("captured").stdout_capture().run()
    assert output == pipework.Output(0, b"captured" + NEWLINE, b"")
    assert succeeds().run() == pipework.Output(0, b"", b"")


def test_start_returns_independent_handles():
    first = say("first").stdout_capture().start()
    second = say("second").stdout_capture().start()
    assert b"second" + NEWLINE == second.wait().stdout
    assert b"first" + NEWLINE == first.wait().stdout


def test_expressions_can_be_run_twice():
    expression = copy_stdin().stdin_bytes(b"again").stdout_capture()
    assert b"again" == expression.run().stdout
    assert b"again" == expression.run().stdout


def test_read_trims_exactly_one_newline():
    assert "hi\n" == emit(b"hi\n\n").read()
    assert "hi" == emit(b"hi\r\n").read()
    assert "hi\r" == emit(b"hi\r").read()
    assert "" == emit(b"").read()


def test_read_rejects_invalid_utf8():
    with raises(DecodeError) as e:
        emit(b"\xff\xfe").read()
    assert isinstance(e.value, UnicodeDecodeError)
    assert isinstance(e.value, pipework.PipeworkError)


def test_non_ascii_text():
    text = "日本語"
    assert text == copy_stdin().stdin_bytes(text).read()
    output = copy_stdin().stdin_bytes(text).stdout_capture().run()
    assert text.encode("utf8") == output.stdout


def test_wait_after_pipe():
    handle = (
        copy_stdin()
        .stdin_bytes(b"0123456789abcdef")
        .pipe(take_bytes(10))
        .stdout_capture()
        .start()
    )
    assert handle.wait() == pipework.Output(0, b"0123456789", b"")


def test_double_wait_does_not_crash():
    handle = say("once").stdout_capture().start()
    assert handle.wait() == handle.wait()


def test_pids():
    handle = say("hi").stdout_null().start()
    assert [type(pid) for pid in handle.pids()] == [int]
    handle.wait()

    three_stage = say("hi").pipe(copy_stdin().pipe(copy_stdin())).stdout_null()
    handle = three_stage.start()
    pids = handle.pids()
    assert len(pids) == 3
    assert len(set(pids)) == 3
    handle.wait()


def test_concurrent_starts_do_not_share_state():
    handles = {}

    def start_one(i):
        handles[i] = print_env("n").env("n", str(i)).stdout_capture().start()

    threads = [threading.Thread(target=start_one, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    for i, handle in handles.items():
        assert str(i).encode() + NEWLINE == handle.wait().stdout


# Exit statuses
# -------------


def test_checked_failure_raises():
    with raises(StatusError) as e:
        exits_with(5).run()
    assert 5 == e.value.output.status
    assert 5 == e.value.returncode
    assert "5" in str(e.value)


def test_unchecked_keeps_the_code():
    assert 5 == exits_with(5).unchecked().run().status


def test_status_error_carries_partial_output():
    with raises(StatusError) as e:
        say("partial").then(exits_with(123)).stdout_capture().run()
    assert 123 == e.value.output.status
    assert b"partial" + NEWLINE == e.value.output.stdout


def test_pipe_status_precedence():
    one = exits_with(1)
    two = exits_with(2)
    zero = exits_with(0)
    cases = [
        # Both checked failures: the right side wins.
        (one.pipe(two).unchecked(), 2),
        # A checked failure beats an unchecked one, on either side.
        (one.pipe(two.unchecked()).unchecked(), 1),
        (one.unchecked().pipe(two).unchecked(), 2),
        # Both unchecked: the right side wins again...
        (one.unchecked().pipe(two.unchecked()).unchecked(), 2),
        # ...unless it exited zero.
        (one.unchecked().pipe(zero.unchecked()).unchecked(), 1),
        (one.unchecked().pipe(zero), 1),
    ]
    for expression, status in cases:
        assert status == expression.run().status, repr(expression)


def test_pipe_failure_on_either_side_raises():
    for expression, status in [
        (succeeds().pipe(fails()), 1),
        (fails().pipe(succeeds()), 1),
        (fails().pipe(exits_with(3)), 3),
        (exits_with(1).pipe(exits_with(2).unchecked()), 1),
    ]:
        with raises(StatusError) as e:
            expression.run()
        assert status == e.value.output.status


def test_then_failure_on_either_side_raises():
    with raises(StatusError) as e:
        succeeds().then(exits_with(4)).run()
    assert 4 == e.value.output.status
    with raises(StatusError) as e:
        exits_with(4).then(succeeds()).run()
    assert 4 == e.value.output.status


def test_then_status_comes_from_the_right_side():
    # An unchecked failure on the left doesn't outlive a successful right side,
    # unlike in a pipe.
    assert 0 == exits_with(1).unchecked().then(exits_with(0)).run().status
    assert 0 == exits_with(3).unchecked().then(exits_with(0)).unchecked().run().status
    assert 1 == exits_with(1).unchecked().pipe(exits_with(0)).run().status

    assert 4 == exits_with(3).unchecked().then(exits_with(4).unchecked()).run().status
    with raises(StatusError) as e:
        exits_with(3).unchecked().then(exits_with(4)).run()
    assert 4 == e.value.output.status


# Pipes
# -----


def test_pipe():
    out = take_bytes(3).pipe(substitute("x", "a")).stdin_bytes("xxxxxxxxxx").read()
    assert "aaa" == out


def test_pipe_through_transformer():
    assert "yyy" == say("xxx").pipe(each_char_to_y()).read()


def test_nested_pipes():
    inner = copy_stdin().pipe(substitute("i", "o"))
    assert "ho" == say("hi").pipe(inner).read()


def test_left_side_stops_when_right_side_exits():
    # The left side writes forever. It only stops because its writes fail once
    # the right side has exited and closed the read end.
    endless = py(
        "import sys\n"
        "try:\n"
        "    while True:\n"
        "        sys.stdout.write('0')\n"
        "except Exception:\n"
        "    pass\n"
    )
    assert "00000" == endless.unchecked().pipe(take_bytes(5)).read()


def test_right_side_fails_to_start():
    # The left side would sleep forever, so this only returns because it gets
    # killed and reaped.
    with raises(SpawnError) as e:
        nap(1000000).pipe(cmd(MISSING_PROGRAM)).run()
    assert errno.ENOENT == e.value.errno


# Then
# ----


def test_then():
    assert "lo" == succeeds().then(say("lo")).read()
    assert "one" + os.linesep + "two" == say("one").then(say("two")).read()


def test_then_skips_right_side_after_checked_failure():
    with raises(StatusError) as e:
        fails().then(say("never")).stdout_capture().run()
    assert b"" == e.value.output.stdout


def test_then_runs_after_unchecked_failures():
    skipped = fails().unchecked()
    output = skipped.then(say("ran")).then(skipped).stdout_capture().run()
    assert 1 == output.status
    assert b"ran" + NEWLINE == output.stdout


def test_then_inside_pipe():
    out = say("a").then(say("b")).pipe(substitute("a", "x")).read()
    assert "x" + os.linesep + "b" == out


def test_then_shares_piped_input():
    out = take_bytes(2).then(copy_stdin()).stdin_bytes(b"abcdef").read()
    assert "abcdef" == out


def test_then_does_not_block_start():
    read_fd, write_fd = os.pipe()
    expression = copy_stdin().stdin_file(read_fd).then(say("done"))
    handle = expression.stdout_capture().start()
    os.close(read_fd)
    # The left side is still waiting for input, so the right side can't have
    # been started.
    assert 1 == len(handle.pids())
    os.write(write_fd, b"x")
    os.close(write_fd)
    assert b"x" + b"done" + NEWLINE == handle.wait().stdout
    assert 2 == len(handle.pids())


def test_capture_both_streams_of_then():
    expression = say("hi").then(say_err("lo"))
    output = expression.stdout_capture().stderr_capture().run()
    assert "hi" == output.stdout.decode().strip()
    assert "lo" == output.stderr.decode().strip()


def test_right_side_of_then_fails_to_start():
    handle = succeeds().then(cmd(MISSING_PROGRAM)).start()
    with raises(SpawnError):
        handle.wait()


def test_spawn_error_beats_status_error():
    with raises(SpawnError):
        fails().unchecked().then(cmd(MISSING_PROGRAM)).run()


# Working directory
# -----------------


def test_dir():
    outer = fresh_dir()
    inner = fresh_dir()
    assert outer == print_cwd().dir(outer).read()
    assert outer == print_cwd().dir(Path(outer)).read()
    # The innermost dir applies.
    assert outer == print_cwd().dir(outer).dir(inner).read()


def test_relative_dir_nests_in_outer_dir():
    base = fresh_dir()
    os.mkdir(os.path.join(base, "sub"))
    assert os.path.join(base, "sub") == print_cwd().dir("sub").dir(base).read()


def test_relative_program_ignores_dir():
    # "./python" only exists in the caller's directory. It has to resolve there
    # even though the child runs somewhere else.
    child_dir = fresh_dir()
    program = os.path.join(".", os.path.basename(sys.executable))
    caller_dir = os.getcwd()
    os.chdir(os.path.dirname(sys.executable))
    try:
        out = cmd(program, "-c", "import os; print(os.getcwd())").dir(child_dir).read()
    finally:
        os.chdir(caller_dir)
    assert child_dir == os.path.realpath(out)


def test_stdin_path_is_relative_to_dir():
    base = fresh_dir()
    with open(os.path.join(base, "input.txt"), "w") as f:
        f.write("from the dir")
    assert "from the dir" == copy_stdin().stdin_path("input.txt").dir(base).read()


def test_spawn_error_in_missing_dir():
    with raises(SpawnError):
        succeeds().dir(os.path.join(fresh_dir(), "missing")).run()


# Environment
# -----------


def test_env():
    assert "value" == print_env("x").env("x", "value").read()
    assert "value" == print_env("x").env("x", Path("value")).read()
    # The inner call wins.
    assert "inner" == print_env("x").env("x", "inner").env("x", "outer").read()


def test_env_keeps_the_rest_of_the_environment():
    os.environ["PIPEWORK_TEST_OTHER"] = "still here"
    try:
        out = print_env("PIPEWORK_TEST_OTHER").env("x", "value").read()
    finally:
        del os.environ["PIPEWORK_TEST_OTHER"]
    assert "still here" == out


def test_env_remove():
    # The inner builder wins.
    assert "value" == print_env("x").env("x", "value").env_remove("x").read()
    assert "" == print_env("x").env_remove("x").env("x", "value").read()
    name = "PIPEWORK_TEST_REMOVED"
    os.environ[name] = "inherited"
    try:
        assert "inherited" == print_env(name).read()
        assert "" == print_env(name).env_remove(name).read()
    finally:
        del os.environ[name]


def test_full_env():
    name = "PIPEWORK_TEST_FULL_ENV"
    isolated = dict(os.environ)
    isolated.pop(name, None)
    child = print_env(name).full_env(isolated)
    # Neither the parent's environment nor an outer env() gets through.
    os.environ[name] = "from the parent"
    try:
        assert "" == child.env(name, "from outside").read()
    finally:
        del os.environ[name]

    assert "only" == print_env("ONLY").full_env({"ONLY": "only"}).read()


def test_builders_do_not_modify_their_receiver():
    base = print_env("x")
    before = repr(base)
    with_env = base.env("x", "set")
    assert before == repr(base)
    assert "set" == with_env.read()
    assert "" == base.read()


def test_before_spawn():
    def append_inner(command, kwargs):
        command.append("inner")

    def append_outer(command, kwargs):
        command.append("outer")

    expression = say("args:").before_spawn(append_inner).before_spawn(append_outer)
    assert "args: outer inner" == expression.read()


# Standard input
# --------------


def test_stdin_bytes():
    assert "faa" == substitute("o", "a").stdin_bytes("foo").read()
    assert "\x00" * 10 == take_bytes(10).stdin_bytes(b"\x00" * 100).read()


def test_stdin_targets():
    path = temp_file("foo")
    assert "faa" == substitute("o", "a").stdin_path(path).read()
    assert "fbb" == substitute("o", "b").stdin_path(Path(path)).read()
    with open(path) as f:
        assert "fcc" == substitute("o", "c").stdin_file(f).read()
    assert "" == substitute("o", "d").stdin_null().read()
    assert "" == substitute("o", "e").stdin(Null()).read()


def test_stdin_owned_handle_is_duplicated_per_run():
    handle = OwnedHandle(open(temp_file("owned"), "rb"))
    expression = copy_stdin().stdin(handle)
    assert "owned" == expression.read()
    # The second run reads through a duplicate of the same open file, which
    # has already been read to the end.
    assert "" == expression.read()
    handle.close()
    handle.close()


def test_stdin_pipe_end_is_consumed():
    read_end, write_end = pipework.new_pipe()
    handle = copy_stdin().stdin(read_end).stdout_capture().start()
    with write_end.open_file() as f:
        f.write(b"through the pipe")
    assert b"through the pipe" == handle.wait().stdout


def test_unread_input_is_not_an_error():
    # Far more than a pipe buffer holds, going to a child that reads none of
    # it. The writer thread gets a broken pipe, which isn't reported.
    assert 0 == succeeds().stdin_bytes(b"\x00" * 1000000).run().status


def test_input_thread_write_failure_is_reported(monkeypatch):
    def failing_copy(src, dst):
        raise OSError(errno.EIO, "Input/output error")

    monkeypatch.setattr(forwarding.shutil, "copyfileobj", failing_copy)
    with raises(StreamError) as e:
        succeeds().stdin_bytes(b"data").run()
    assert errno.EIO == e.value.errno
    assert isinstance(e.value, pipework.PipeworkError)

    # Only a broken pipe is forgiven.
    def broken_copy(src, dst):
        raise BrokenPipeError(errno.EPIPE, "Broken pipe")

    monkeypatch.setattr(forwarding.shutil, "copyfileobj", broken_copy)
    assert 0 == succeeds().stdin_bytes(b"data").run().status


# Standard output and error
# -------------------------


def test_stdout_targets():
    path = temp_file()
    say("to a path").stdout_path(path).run()
    assert "to a path\n" == read_text(path)

    say("to a Path").stdout_path(Path(path)).run()
    assert "to a Path\n" == read_text(path)

    with open(path, "w") as f:
        say("to a file").stdout_file(f).run()
    assert "to a file\n" == read_text(path)

    assert "" == say("nowhere").stdout_null().read()


def test_stdout_path_is_shared_by_then():
    path = temp_file()
    say("one").then(say("two")).stdout_path(path).run()
    assert "one\ntwo\n" == read_text(path)


def test_stdout_pipe_end_is_consumed():
    read_end, write_end = pipework.new_pipe()
    expression = say("hi").stdout(write_end)
    expression.run()
    # The child had the only write end, so the read finds EOF after it exits.
    with read_end.open_file() as f:
        assert b"hi" + NEWLINE == f.read()
    with raises(ValueError):
        expression.run()


def test_stderr_targets():
    path = temp_file()
    say_err("to a path").stderr_path(path).run()
    assert "to a path\n" == read_text(path)

    with open(path, "w") as f:
        say_err("to a file").stderr_file(f).run()
    assert "to a file\n" == read_text(path)

    read_fd, write_fd = os.pipe()
    say_err("to a raw fd").stderr_file(write_fd).run()
    os.close(write_fd)
    with os.fdopen(read_fd, "rb") as reader:
        assert b"to a raw fd" + NEWLINE == reader.read()

    output = say_err("nowhere").stderr_null().stderr_capture().run()
    assert b"" == output.stderr


def test_merging_streams():
    output = say("moved").stdout_to_stderr().stdout_capture().stderr_capture().run()
    assert output == pipework.Output(0, b"", b"moved" + NEWLINE)

    output = say_err("moved").stderr_to_stdout().stdout_capture().stderr_capture().run()
    assert output == pipework.Output(0, b"moved" + NEWLINE, b"")


def test_merge_follows_outer_redirects():
    # stderr_to_stdout joins whatever stdout is at that point, which is the
    # capture, not the original stdout.
    assert "hi" == say("hi").stdout_to_stderr().stderr_to_stdout().read()


def test_stdout_stderr_swap():
    expression = say("err").stdout_to_stderr().pipe(say("out")).stdout_stderr_swap()
    output = expression.stdout_capture().stderr_capture().run()
    assert output == pipework.Output(0, b"err" + NEWLINE, b"out" + NEWLINE)


def test_null_everything():
    assert "" == copy_stdin().stdin_null().stdout_null().stderr_null().read()


def test_invalid_io_args():
    with raises(TypeError):
        cmd("foo").stdin_bytes(1.0).run()
    for builder in ("stdin_path", "stdout_path", "stderr_path"):
        with raises(TypeError):
            getattr(cmd("foo"), builder)(1.0)
    with raises(TypeError):
        cmd("foo").stdin("not an IoValue")


# Programs and spawn errors
# -------------------------


def write_script(directory, name):
    path = Path(directory, name + (".bat" if os.name == "nt" else ".sh"))
    with path.open("w") as f:
        f.write("@echo off\n" if os.name == "nt" else "#! /bin/sh\n")
        f.write("echo from the script\n")
    path.chmod(0o755)
    return path


def test_program_can_be_a_path():
    assert "from the script" == cmd(write_script(fresh_dir(), "script")).read()


def test_relative_path_program_runs_from_caller_dir():
    # A bare "script.sh" wouldn't run without a leading dot, but as a Path it
    # has to mean the local file.
    name = "pipework_" + os.urandom(4).hex()
    script = write_script(".", name)
    try:
        assert "from the script" == cmd(Path(script.name)).read()
    finally:
        script.unlink()


def test_relative_path_program_does_not_search_PATH():
    echo = Path("echo")
    assert not echo.exists()
    with raises(SpawnError) as e:
        cmd(echo).run()
    assert errno.ENOENT == e.value.errno


def test_spawn_error():
    with raises(SpawnError) as e:
        cmd(MISSING_PROGRAM).run()
    assert isinstance(e.value, OSError)
    assert errno.ENOENT == e.value.errno
    assert isinstance(e.value.__cause__, FileNotFoundError)


# Expression values
# -----------------


def test_repr_round_trip():
    """repr() gives back the builder calls that made the expression, with
    single-quoted strings since that's what repr() of a str emits."""
    sources = [
        "cmd('foo').stdin_bytes('a').stdout_capture().stderr_capture()",
        "cmd('foo').stdin_path('a').stdout_path('b').stderr_path('c')",
        "cmd('foo').stdin_file(0).stdout_file(0).stderr_file(0)",
        "cmd('foo').stdin_null().stdout_null().stderr_null()",
        "cmd('foo').stdout_to_stderr().stderr_to_stdout()",
        "cmd('foo').stdout_stderr_swap().before_spawn(0)",
        "cmd('foo').env('a', 'b').full_env({}).env_remove('c')",
        "cmd('foo').pipe(cmd('bar').dir('stuff').unchecked())",
        "cmd('foo').then(cmd('bar')).pipe(cmd('baz'))",
    ]
    for source in sources:
        assert source == repr(eval(source))


def test_DaemonicThread():
    def divide_by_zero():
        return 1 / 0

    thread = DaemonicThread(divide_by_zero)
    thread.start()
    with raises(ZeroDivisionError):
        thread.join()

    thread = DaemonicThread(lambda: "result")
    thread.start()
    assert "result" == thread.join()

    # If the daemon flag weren't set, this thread would keep the test process
    # from exiting.
    DaemonicThread(lambda: time.sleep(1000000)).start()

from collections import namedtuple
from contextlib import contextmanager
import logging
import os
import subprocess
import threading
from pathlib import PurePath

from .errors import SpawnError
from .forwarding import CaptureReader, DaemonicThread, start_input_thread
from .handle import (
    Handle,
    HandleNode,
    ThenState,
    kill,
    wait_discarding_errors,
    wait_on_status,
)
from .iovalue import BorrowedHandle, new_pipe, stringify_if_path
from .kinds import COMBINATORS, NodeKind
from .resolver import is_checked_error

logger = logging.getLogger(__name__)

# The IOContext represents the child process environment at any given point in
# the execution of an expression. We read the working directory and the entire
# environment once, when we create the root context in start(), and never look
# at the parent's globals again. Methods like .env(), .dir(), and .pipe()
# create new modified contexts and pass those to their children. The IOContext
# does *not* own any of the values it's holding; whichever node opened a
# descriptor closes it once its subtree has been started.
IOContext = namedtuple(
    "IOContext",
    [
        "stdin",
        "stdout",
        "stderr",
        "dir",
        "base_dir",
        "env",
        "stdout_capture",
        "stderr_capture",
        "before_spawn_hooks",
    ],
)

CLONED_FIELDS = ("stdin", "stdout", "stderr", "stdout_capture", "stderr_capture")


def start(expression):
    stdout_reader = None
    stderr_reader = None
    if contains_kind(expression, NodeKind.STDOUT_CAPTURE):
        stdout_reader = CaptureReader("pipework-stdout")
    if contains_kind(expression, NodeKind.STDERR_CAPTURE):
        stderr_reader = CaptureReader("pipework-stderr")
    context = new_iocontext(stdout_reader, stderr_reader)
    try:
        root = start_expression(expression, context)
    finally:
        # Children and then() threads hold their own copies of the write
        # ends. Once those are all closed, the readers see EOF.
        for reader in (stdout_reader, stderr_reader):
            if reader is not None:
                reader.close_write_end()
    return Handle(root, repr(expression), stdout_reader, stderr_reader)


def new_iocontext(stdout_reader, stderr_reader):
    cwd = os.getcwd()
    return IOContext(
        # Hardcode the standard file descriptors. We can't rely on None here,
        # because stdout/stderr swapping needs to work.
        stdin=BorrowedHandle(0),
        stdout=BorrowedHandle(1),
        stderr=BorrowedHandle(2),
        dir=cwd,
        base_dir=cwd,
        # Pretend this dictionary is immutable please.
        env=os.environ.copy(),
        stdout_capture=None if stdout_reader is None else stdout_reader.write_end,
        stderr_capture=None if stderr_reader is None else stderr_reader.write_end,
        before_spawn_hooks=[],
    )


def contains_kind(expression, kind):
    if expression._kind is kind:
        return True
    elif expression._kind is NodeKind.CMD:
        return False
    elif expression._kind in COMBINATORS:
        left, right = expression._payload
        return contains_kind(left, kind) or contains_kind(right, kind)
    return contains_kind(expression._inner, kind)


def start_expression(expression, context):
    kind = expression._kind
    if kind is NodeKind.CMD:
        prog, args = expression._payload
        return HandleNode(kind, None, start_cmd(context, prog, args))
    elif kind is NodeKind.PIPE:
        left_expr, right_expr = expression._payload
        return HandleNode(kind, None, start_pipe(context, left_expr, right_expr))
    elif kind is NodeKind.THEN:
        left_expr, right_expr = expression._payload
        return HandleNode(kind, None, start_then(context, left_expr, right_expr))

    payload_cell = [None]
    with modify_context(expression, context, payload_cell) as modified_context:
        inner = start_expression(expression._inner, modified_context)
    return HandleNode(kind, inner, payload_cell[0])


def start_cmd(context, prog, args):
    prog_str = stringify_with_dot_if_path(prog)
    maybe_absolute_prog = maybe_canonicalize_exe_path(prog_str, context)
    args_strs = [stringify_if_path(arg) for arg in args]
    command = [maybe_absolute_prog] + args_strs
    kwargs = {
        "cwd": context.dir,
        "env": context.env,
        "stdin": context.stdin.popen_arg(),
        "stdout": context.stdout.popen_arg(),
        "stderr": context.stderr.popen_arg(),
    }
    # The innermost hooks are pushed last, and we execute them last.
    for hook in context.before_spawn_hooks:
        hook(command, kwargs)
    return safe_popen(command, **kwargs)


def start_pipe(context, left_expr, right_expr):
    read_end, write_end = new_pipe()
    try:
        # Start the left side first. If this fails for some reason, just let
        # the failure propagate. Either way our copy of the write end gets
        # closed right away, so that the right side will see EOF when the left
        # side exits.
        try:
            left_handle = start_expression(
                left_expr, context._replace(stdout=write_end)
            )
        finally:
            write_end.close()

        # Now the left side is started. If the right side fails to start, we
        # can't let the left side turn into a zombie. We have to await it, and
        # that means we have to kill it.
        try:
            right_handle = start_expression(
                right_expr, context._replace(stdin=read_end)
            )
        except Exception:
            logger.debug("right side of a pipe failed to start, killing left")
            kill(left_handle)
            wait_discarding_errors(left_handle)
            raise
    finally:
        read_end.close()

    return (left_handle, right_handle)


def start_then(context, left_expr, right_expr):
    left_handle = start_expression(left_expr, context)
    then_state = ThenState(left_handle)
    # The caller closes its descriptors as soon as we return, but the right
    # side won't be started until later. Keep duplicates of everything it
    # might need, and close them once it has been started (or skipped).
    right_context = clone_context(context)

    def then_thread():
        try:
            left_status = wait_on_status(left_handle)
            if is_checked_error(left_status):
                return left_status
            with then_state.lock:
                if not then_state.cancelled:
                    then_state.right = start_expression(right_expr, right_context)
            return left_status
        finally:
            close_context(right_context)

    then_state.thread = DaemonicThread(then_thread, name="pipework-then")
    then_state.thread.start()
    return then_state


def clone_context(context):
    clones = {}
    try:
        for field in CLONED_FIELDS:
            value = getattr(context, field)
            if value is not None:
                clones[field] = value.try_clone()
    except Exception:
        for clone in clones.values():
            clone.close()
        raise
    return context._replace(**clones)


def close_context(context):
    for field in CLONED_FIELDS:
        value = getattr(context, field)
        if value is not None:
            value.close()


@contextmanager
def modify_context(expression, context, payload_cell):
    kind = expression._kind
    arg = expression._payload

    if kind is NodeKind.IO:
        stream, value = arg
        bound, owned = value.connect(stream, context.dir)
        try:
            yield context._replace(**{stream.value: bound})
        finally:
            if owned:
                bound.close()

    elif kind is NodeKind.STDIN_BYTES:
        read_end, writer_thread = start_input_thread(arg)
        payload_cell[0] = writer_thread
        try:
            yield context._replace(stdin=read_end)
        finally:
            read_end.close()

    elif kind is NodeKind.STDOUT_CAPTURE:
        yield context._replace(stdout=context.stdout_capture)

    elif kind is NodeKind.STDOUT_TO_STDERR:
        yield context._replace(stdout=context.stderr)

    elif kind is NodeKind.STDERR_CAPTURE:
        yield context._replace(stderr=context.stderr_capture)

    elif kind is NodeKind.STDERR_TO_STDOUT:
        yield context._replace(stderr=context.stdout)

    elif kind is NodeKind.STDOUT_STDERR_SWAP:
        yield context._replace(stdout=context.stderr, stderr=context.stdout)

    elif kind is NodeKind.DIR:
        # Relative dirs nest inside the enclosing one. Note that join does
        # nothing if the path is absolute.
        new_dir = os.path.join(context.dir, os.fsdecode(arg))
        yield context._replace(dir=new_dir)

    elif kind is NodeKind.ENV:
        # Don't modify the environment dictionary in place. That would affect
        # all references to it. Make a copy instead.
        name, val = arg
        new_env = context.env.copy()
        # Windows needs special handling of env var names.
        new_env[convert_env_var_name(name)] = stringify_if_path(val)
        yield context._replace(env=new_env)

    elif kind is NodeKind.ENV_REMOVE:
        # As above, don't modify the dictionary in place.
        new_env = context.env.copy()
        new_env.pop(convert_env_var_name(arg), None)
        yield context._replace(env=new_env)

    elif kind is NodeKind.FULL_ENV:
        new_env = {
            convert_env_var_name(k): stringify_if_path(v) for (k, v) in arg.items()
        }
        yield context._replace(env=new_env)

    elif kind is NodeKind.UNCHECKED:
        # Unchecked only affects what happens during wait.
        yield context

    elif kind is NodeKind.BEFORE_SPAWN:
        # As with env, don't modify the list in place. Make a copy.
        before_spawn_hooks = context.before_spawn_hooks + [arg]
        yield context._replace(before_spawn_hooks=before_spawn_hooks)

    else:
        raise NotImplementedError  # pragma: no cover


# Pathlib never renders a leading './' in front of a local path. That's an
# issue because on POSIX subprocess.py (like bash) won't execute scripts in the
# current directory without it. In the same vein, we also don't want
# Path('echo') to match '/usr/bin/echo' from the $PATH. To work around both
# issues, we explicitly join a leading dot to any relative pathlib path.
def stringify_with_dot_if_path(x):
    if isinstance(x, PurePath):
        # Note that join does nothing if the path is absolute.
        return os.path.join(".", str(x))
    return x


# Is a relative exe path interpreted relative to the parent's cwd, or the
# child's? It's platform dependent. Windows uses the parent's, but because of
# the fork-chdir-exec pattern, Unix usually uses the child's. We always use the
# parent's directory as it was when start() was called, so that `dir` never
# changes which program runs.
#
# We only rewrite names with a separator in them. A name like "emacs" is
# probably a program in the PATH rather than a local file, and anything given
# as a Path has a separator by now, thanks to stringify_with_dot_if_path. We
# also leave the name alone when `dir` isn't in use, so that the caller keeps
# control of the child's argv[0].
def maybe_canonicalize_exe_path(exe_name, context):
    exe_str = os.fsdecode(exe_name)
    altsep = os.path.altsep
    has_sep = os.path.sep in exe_str or (altsep is not None and altsep in exe_str)

    if has_sep and context.dir != context.base_dir and not os.path.isabs(exe_str):
        return os.path.normpath(os.path.join(context.base_dir, exe_str))
    else:
        return exe_name


popen_lock = threading.Lock()


def is_windows():
    return os.name == "nt"


# The Windows implementation of subprocess.Popen() creates temporary
# inheritable copies of its descriptors, and if two threads spawn at the same
# time, each child can inherit the other's copies. With pipes, an extra write
# handle held by the wrong child keeps a reader from ever seeing EOF. Now that
# then() starts children from background threads, this can happen within a
# single expression. The workaround is to protect Popen() with a global lock.
# See https://bugs.python.org/issue25565.
def safe_popen(command, **kwargs):
    with popen_lock:
        try:
            child = subprocess.Popen(command, **kwargs)
        except OSError as e:
            raise SpawnError.from_os_error(e, command) from e
    logger.debug("spawned %r as pid %d", command, child.pid)
    return child


# Environment variables are case-insensitive on Windows. To deal with that,
# Python on Windows converts all the keys in os.environ to uppercase
# internally. That's mostly transparent when we deal with os.environ directly,
# but when we call os.environ.copy(), we get a regular dictionary with all the
# keys uppercased. We need to do a similar conversion, or else additions and
# removals in that copy won't interact properly with the inherited parent
# environment.
def convert_env_var_name(var):
    if is_windows():
        return var.upper()
    return var

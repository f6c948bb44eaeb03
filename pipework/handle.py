from collections import namedtuple
import logging
import threading

from .errors import StatusError
from .kinds import NodeKind
from .resolver import (
    ExecStatus,
    is_checked_error,
    mark_unchecked,
    resolve,
    resolve_then,
)

logger = logging.getLogger(__name__)


class Output(namedtuple("Output", ["status", "stdout", "stderr"])):
    r"""The return type of :func:`Expression.run` and :func:`Handle.wait`. It
    carries the public fields ``status``, ``stdout``, and ``stderr``. If
    :func:`Expression.stdout_capture` and :func:`Expression.stderr_capture`
    aren't used, ``stdout`` and ``stderr`` respectively will be empty.

    >>> from pipework import cmd
    >>> cmd("bash", "-c", "echo hi 1>&2").stderr_capture().run()
    Output(status=0, stdout=b'', stderr=b'hi\n')
    """
    __slots__ = ()


# The running counterpart of one expression node. The payload depends on the
# kind: a Popen for CMD, a (left, right) pair for PIPE, a ThenState for THEN,
# and the writer thread for STDIN_BYTES. Wrapper kinds keep their inner node.
HandleNode = namedtuple("HandleNode", ["kind", "inner", "payload"])


# The right side of a then() is started by a background thread once the left
# side has exited. The lock orders that start against kill().
class ThenState:
    def __init__(self, left):
        self.left = left
        self.right = None
        self.cancelled = False
        self.lock = threading.Lock()
        self.thread = None


class Handle:
    r"""A handle representing one or more running child processes, returned by
    the :func:`Expression.start` method.

    Note that leaking a :class:`Handle` without calling :func:`wait` will turn
    the children into zombie processes. In a long-running program, that could
    be a serious resource leak.
    """

    def __init__(self, root, expression_str, stdout_reader, stderr_reader):
        self._root = root
        self._expression_str = expression_str
        self._stdout_reader = stdout_reader
        self._stderr_reader = stderr_reader

    def wait(self):
        r"""Wait for the child process(es) and every background thread to
        finish, and return an :class:`Output` containing the exit status and
        any captured output.

        >>> from pipework import cmd
        >>> handle = cmd("true").start()
        >>> handle.wait()
        Output(status=0, stdout=b'', stderr=b'')

        Raise :class:`StatusError` if the resolved status is a checked
        non-zero one, or the first :class:`StreamError` or
        :class:`SpawnError` encountered while waiting, in pipeline order.
        """
        status = wait_on_status(self._root)
        output = Output(
            status.code,
            join_reader(self._stdout_reader),
            join_reader(self._stderr_reader),
        )
        if is_checked_error(status):
            raise StatusError(output, self._expression_str)
        return output

    def pids(self):
        r"""Return the PIDs of all the child processes spawned so far. The
        order of the PIDs in the returned list is the same as the pipeline
        order, from left to right. The right side of a :func:`Expression.then`
        only shows up once it has started.
        """
        return pids(self._root)


def join_reader(reader):
    if reader is None:
        return b""
    return reader.join()


# Waits on every child and thread under the node, in depth-first,
# left-to-right order, and returns the resolved ExecStatus. This doesn't raise
# StatusError, but it does re-raise errors from background threads.
def wait_on_status(node):
    if node.kind is NodeKind.CMD:
        child = node.payload
        code = child.wait()
        logger.debug("child %d exited with status %d", child.pid, code)
        return ExecStatus(code=code, checked=True)
    elif node.kind is NodeKind.PIPE:
        left, right = node.payload
        return wait_pipe(left, right)
    elif node.kind is NodeKind.THEN:
        return wait_then(node.payload)

    status = wait_on_status(node.inner)
    if node.kind is NodeKind.STDIN_BYTES:
        writer_thread = node.payload
        writer_thread.join()
    elif node.kind is NodeKind.UNCHECKED:
        status = mark_unchecked(status)
    return status


def wait_pipe(left, right):
    try:
        left_status = wait_on_status(left)
    except Exception:
        # The left error is the one we report, but the right side still has
        # to be reaped.
        wait_discarding_errors(right)
        raise
    right_status = wait_on_status(right)
    return resolve(left_status, right_status)


def wait_then(then_state):
    # The thread returns the left status, after starting the right side if the
    # left side didn't fail.
    left_status = then_state.thread.join()
    if then_state.right is None:
        return left_status
    right_status = wait_on_status(then_state.right)
    return resolve_then(left_status, right_status)


def wait_discarding_errors(node):
    try:
        wait_on_status(node)
    except Exception as e:
        logger.debug("discarding error from a sibling: %r", e)


def kill(node):
    if node.kind is NodeKind.CMD:
        child = node.payload
        if child.returncode is None:
            child.kill()
    elif node.kind is NodeKind.PIPE:
        left, right = node.payload
        kill(left)
        kill(right)
    elif node.kind is NodeKind.THEN:
        then_state = node.payload
        with then_state.lock:
            then_state.cancelled = True
            right = then_state.right
        kill(then_state.left)
        if right is not None:
            kill(right)
    else:
        kill(node.inner)


def pids(node):
    if node.kind is NodeKind.CMD:
        return [node.payload.pid]
    elif node.kind is NodeKind.PIPE:
        left, right = node.payload
        return pids(left) + pids(right)
    elif node.kind is NodeKind.THEN:
        then_state = node.payload
        with then_state.lock:
            right = then_state.right
        right_pids = [] if right is None else pids(right)
        return pids(then_state.left) + right_pids
    else:
        return pids(node.inner)

import os

from . import engine
from .errors import DecodeError
from .iovalue import BorrowedHandle, IoValue, Null, Path, Stream
from .kinds import COMBINATORS, NodeKind


def cmd(prog, *args):
    r"""Return an :class:`Expression` that runs ``prog`` with ``args``.

    Every part of the command line is passed to the child as a separate
    argument, with no shell parsing. Strings, bytes and pathlib paths are all
    accepted. A pathlib path given as the program always means a file, never
    a lookup in ``PATH``.

    >>> cmd("echo", "hi").read()
    'hi'
    """
    return Expression(NodeKind.CMD, None, (prog, args))


def sh(command_line):
    r"""Return an :class:`Expression` that hands ``command_line`` to the
    platform shell: ``/bin/sh -c`` on Unix and ``cmd.exe /C`` on Windows.
    Quoting and globbing are up to the shell.

    >>> sh("echo hi | tr a-z A-Z").read()
    'HI'
    """
    if os.name == "nt":
        return cmd("cmd.exe", "/C", command_line)
    return cmd("/bin/sh", "-c", command_line)


class Expression:
    r"""A tree of commands, combinators and redirects, and the environment
    they run in.

    Expressions are values. Every builder method returns a new tree that
    wraps the old one, so an expression can be shared, extended in several
    directions and executed any number of times. Each execution gets its own
    processes, pipes and threads. Outer wrappers only apply to the subtree
    they wrap, and where the same setting is made twice the inner one wins
    for the commands beneath it.
    """

    def __init__(self, _kind, inner, payload=None):
        self._kind = _kind
        self._inner = inner
        self._payload = payload

    def __repr__(self):
        return repr_expression(self)

    def run(self):
        r"""Start the expression, wait for it, and return its :class:`Output`.
        A checked non-zero status raises :class:`StatusError`.

        >>> cmd("true").run()
        Output(status=0, stdout=b'', stderr=b'')
        """
        return self.start().wait()

    def read(self):
        r"""Run the expression with its stdout captured and return the
        captured text.

        The bytes must be valid UTF-8, or :class:`DecodeError` is raised. A
        single trailing ``\n`` or ``\r\n`` is removed and anything before it
        is kept as is.

        >>> cmd("printf", r"hi\n\n").read()
        'hi\n'
        """
        output = self.stdout_capture().run()
        return decode_and_trim_newline(output.stdout)

    def start(self):
        r"""Spawn the expression's processes and return a :class:`Handle`
        without waiting for them.

        The right side of a :func:`then` is the one exception. A background
        thread spawns it once the left side has exited, so this never blocks
        on a child.

        >>> handle = cmd("echo", "later").stdout_capture().start()
        >>> handle.wait()
        Output(status=0, stdout=b'later\n', stderr=b'')

        Wait on every handle. Children of an abandoned handle are never
        reaped.
        """
        return engine.start(self)

    def pipe(self, right_side):
        r"""Connect this expression's stdout to the stdin of ``right_side``.

        >>> cmd("echo", "hi").pipe(cmd("sed", "s/i/o/")).read()
        'ho'

        Both sides run concurrently. The status is the right side's, with two
        exceptions: a checked failure on the left beats an unchecked or
        successful right, and a non-zero left beats a zero right even when
        both are unchecked.

        If the right side can't be spawned, the left side is killed and
        reaped before the :class:`SpawnError` is raised.
        """
        return Expression(NodeKind.PIPE, None, (self, right_side))

    def then(self, right_side):
        r"""Run ``right_side`` after this expression exits, with the same
        standard streams, like ``&&`` in the shell.

        >>> cmd("echo", "one").then(cmd("echo", "two")).read()
        'one\ntwo'

        A checked failure on the left stops the sequence there, and its
        status is the result. Otherwise the right side runs and its status is
        the result, so an unchecked failure on the left doesn't outlive a
        successful right side.

        >>> cmd("false").unchecked().then(cmd("echo", "anyway")).read()
        'anyway'
        """
        return Expression(NodeKind.THEN, None, (self, right_side))

    def stdin(self, value):
        r"""Connect stdin to an :class:`IoValue`. The typed builders below
        are shortcuts for this.

        >>> from pipework import Null
        >>> cmd("cat").stdin(Null()).read()
        ''
        """
        return redirect(self, Stream.STDIN, value)

    def stdin_bytes(self, buf):
        r"""Feed ``buf`` to stdin from a background writer thread.

        A ``str`` is encoded as UTF-8, with ``\n`` turned into
        ``os.linesep`` first. If the child exits without reading everything,
        the rest is dropped silently.

        >>> cmd("cat").stdin_bytes("feed me").read()
        'feed me'
        """
        return Expression(NodeKind.STDIN_BYTES, self, buf)

    def stdin_path(self, path):
        r"""Connect stdin to a :class:`Path`, opened for reading each time
        the expression starts.

        >>> cmd("head", "-c3").stdin_path("/dev/zero").read()
        '\x00\x00\x00'
        """
        return self.stdin(Path(path))

    def stdin_file(self, file_):
        r"""Connect stdin to a :class:`BorrowedHandle` around ``file_``, a
        raw descriptor or anything with ``fileno()``. pipework never closes
        it."""
        return self.stdin(BorrowedHandle(file_))

    def stdin_null(self):
        r"""Connect stdin to :class:`Null`.

        >>> cmd("cat").stdin_null().read()
        ''
        """
        return self.stdin(Null())

    def stdout(self, value):
        r"""Connect stdout to an :class:`IoValue`."""
        return redirect(self, Stream.STDOUT, value)

    def stdout_path(self, path):
        r"""Connect stdout to a :class:`Path`, created or truncated each time
        the expression starts. A relative path is taken from the :func:`dir`
        in effect at this point.

        >>> cmd("echo", "saved").stdout_path("/tmp/pipework_doctest").run()
        Output(status=0, stdout=b'', stderr=b'')
        >>> open("/tmp/pipework_doctest").read()
        'saved\n'
        """
        return self.stdout(Path(path))

    def stdout_file(self, file_):
        r"""Connect stdout to a :class:`BorrowedHandle` around ``file_``."""
        return self.stdout(BorrowedHandle(file_))

    def stdout_null(self):
        r"""Connect stdout to :class:`Null`.

        >>> cmd("echo", "gone").stdout_null().run()
        Output(status=0, stdout=b'', stderr=b'')
        """
        return self.stdout(Null())

    def stdout_capture(self):
        r"""Collect stdout into :attr:`Output.stdout`. Every capture node in
        a tree writes into the same buffer.

        >>> cmd("echo", "kept").stdout_capture().run()
        Output(status=0, stdout=b'kept\n', stderr=b'')
        """
        return Expression(NodeKind.STDOUT_CAPTURE, self)

    def stdout_to_stderr(self):
        r"""Send stdout wherever stderr goes at this point in the tree.

        >>> both = cmd("bash", "-c", "echo out && echo err 1>&2")
        >>> both.stdout_to_stderr().stdout_capture().stderr_capture().run()
        Output(status=0, stdout=b'', stderr=b'out\nerr\n')
        """
        return Expression(NodeKind.STDOUT_TO_STDERR, self)

    def stderr(self, value):
        r"""Connect stderr to an :class:`IoValue`."""
        return redirect(self, Stream.STDERR, value)

    def stderr_path(self, path):
        r"""Connect stderr to a :class:`Path`, created or truncated each time
        the expression starts."""
        return self.stderr(Path(path))

    def stderr_file(self, file_):
        r"""Connect stderr to a :class:`BorrowedHandle` around ``file_``."""
        return self.stderr(BorrowedHandle(file_))

    def stderr_null(self):
        r"""Connect stderr to :class:`Null`.

        >>> cmd("bash", "-c", "echo noise 1>&2").stderr_null().run()
        Output(status=0, stdout=b'', stderr=b'')
        """
        return self.stderr(Null())

    def stderr_capture(self):
        r"""Collect stderr into :attr:`Output.stderr`.

        >>> cmd("bash", "-c", "echo oops 1>&2").stderr_capture().run()
        Output(status=0, stdout=b'', stderr=b'oops\n')
        """
        return Expression(NodeKind.STDERR_CAPTURE, self)

    def stderr_to_stdout(self):
        r"""Send stderr wherever stdout goes at this point in the tree, like
        ``2>&1``.

        >>> both = cmd("bash", "-c", "echo out && echo err 1>&2")
        >>> both.stderr_to_stdout().stdout_capture().stderr_capture().run()
        Output(status=0, stdout=b'out\nerr\n', stderr=b'')
        """
        return Expression(NodeKind.STDERR_TO_STDOUT, self)

    def stdout_stderr_swap(self):
        r"""Exchange the stdout and stderr targets in effect at this point.

        >>> both = cmd("bash", "-c", "echo out && echo err 1>&2")
        >>> both.stdout_stderr_swap().stdout_capture().stderr_capture().run()
        Output(status=0, stdout=b'err\n', stderr=b'out\n')
        """
        return Expression(NodeKind.STDOUT_STDERR_SWAP, self)

    def dir(self, path):
        r"""Run the subtree in ``path``. Relative values nest inside the
        enclosing :func:`dir`, or the caller's directory at :func:`start`.

        >>> cmd("pwd").dir("/").read()
        '/'

        Redirect paths inside the subtree are opened relative to ``path``.
        A relative program path is not: ``cmd("./tool").dir("sub")`` runs the
        ``./tool`` next to the caller, with ``sub`` as its working directory.
        """
        return Expression(NodeKind.DIR, self, path)

    def env(self, name, val):
        r"""Set one variable on top of the inherited environment.

        >>> cmd("bash", "-c", "echo $GREETING").env("GREETING", "hey").read()
        'hey'
        """
        return Expression(NodeKind.ENV, self, (name, val))

    def env_remove(self, name):
        r"""Drop one variable from the inherited environment. Names are
        compared the way the OS compares them, so case is ignored on Windows.

        >>> os.environ["GREETING"] = "hey"
        >>> cmd("bash", "-c", "echo $GREETING").env_remove("GREETING").read()
        ''
        """
        return Expression(NodeKind.ENV_REMOVE, self, name)

    def full_env(self, env_dict):
        r"""Replace the whole environment with ``env_dict``. Nothing from the
        parent process or from outer :func:`env` calls reaches the subtree.

        >>> os.environ["LEAKED"] = "no"
        >>> only = cmd("bash", "-c", "echo $ONLY$LEAKED")
        >>> only.full_env({"ONLY": "yes"}).read()
        'yes'

        Some programs won't start without a few basics, such as ``SystemRoot``
        on Windows.
        """
        return Expression(NodeKind.FULL_ENV, self, env_dict)

    def unchecked(self):
        r"""Stop a non-zero status of this subtree from raising
        :class:`StatusError`. The code itself is reported unchanged.

        >>> cmd("false").unchecked().run()
        Output(status=1, stdout=b'', stderr=b'')

        The flag belongs to the status this subtree produces, not to the
        commands inside it, so a checked sibling can still fail the whole
        expression.

        >>> cmd("false").unchecked().pipe(cmd("true")).run()
        Output(status=1, stdout=b'', stderr=b'')
        >>> cmd("false").pipe(cmd("true").unchecked()).run()
        Traceback (most recent call last):
        ...
        pipework.errors.StatusError: Expression cmd('false').pipe(cmd('true').unchecked()) returned non-zero exit status: Output(status=1, stdout=b'', stderr=b'')
        """  # noqa: E501
        return Expression(NodeKind.UNCHECKED, self)

    def before_spawn(self, callback):
        r"""Call ``callback(command, kwargs)`` just before each command in
        the subtree is passed to :class:`subprocess.Popen`. Both arguments
        may be changed in place. Outer callbacks run before inner ones.

        >>> def add_arg(command, kwargs):
        ...     command.append("extra")
        >>> cmd("echo", "with").before_spawn(add_arg).read()
        'with extra'
        """
        return Expression(NodeKind.BEFORE_SPAWN, self, callback)


def redirect(expression, stream, value):
    if not isinstance(value, IoValue):
        raise TypeError("Not an IoValue: " + repr(value))
    return Expression(NodeKind.IO, expression, (stream, value))


def repr_expression(expression):
    kind = expression._kind
    if kind is NodeKind.CMD:
        prog, args = expression._payload
        args_str = repr(prog)
        for arg in args:
            args_str += ", " + repr(arg)
        return "cmd({})".format(args_str)
    elif kind in COMBINATORS:
        left, right = expression._payload
        return "{}.{}({})".format(
            repr_expression(left), kind.value, repr_expression(right)
        )

    inner = repr_expression(expression._inner)
    if kind is NodeKind.IO:
        stream, value = expression._payload
        if value.builder_suffix is None:
            return "{}.{}({!r})".format(inner, stream.value, value)
        name = stream.value + "_" + value.builder_suffix
        return "{}.{}({})".format(inner, name, value.repr_arg())

    arg = ""
    if expression._payload is not None:
        if type(expression._payload) is tuple:
            arg = ", ".join(repr(x) for x in expression._payload)
        else:
            arg = repr(expression._payload)
    return "{}.{}({})".format(inner, kind.value, arg)


def decode_and_trim_newline(b):
    try:
        s = b.decode("utf8")
    except UnicodeDecodeError as e:
        raise DecodeError.from_unicode_error(e) from e
    if s.endswith("\r\n"):
        return s[:-2]
    elif s.endswith("\n"):
        return s[:-1]
    return s

import subprocess


class PipeworkError(Exception):
    r"""The base class of every exception raised by an expression while it's
    being started or awaited."""


class StatusError(PipeworkError, subprocess.CalledProcessError):
    r"""The exception raised by default when a child exits with a non-zero exit
    status. See :func:`Expression.unchecked` for suppressing this. If the
    exception is caught, the ``output`` field contains the :class:`Output`.

    >>> from pipework import cmd, StatusError
    >>> try:
    ...     cmd("bash", "-c", "echo hi 1>&2 && false").stderr_capture().run()
    ... except StatusError as e:
    ...     e.output
    Output(status=1, stdout=b'', stderr=b'hi\n')
    """

    def __init__(self, output, expression_str):
        self.output = output
        self.returncode = output.status
        self.cmd = expression_str
        self._expression_str = expression_str

    @property
    def stdout(self):
        return self.output.stdout

    @property
    def stderr(self):
        return self.output.stderr

    def __str__(self):
        return "Expression {0} returned non-zero exit status: {1}".format(
            self._expression_str, self.output
        )


class SpawnError(PipeworkError, OSError):
    r"""Raised when a child process can't be started, for example because the
    program doesn't exist, isn't executable, or the working directory is
    invalid. The ``errno``, ``strerror`` and ``filename`` fields come from the
    underlying :class:`OSError`, which is also chained as ``__cause__``.

    >>> from pipework import cmd, SpawnError
    >>> try:
    ...     cmd("nonexistent_program_abc123").run()
    ... except SpawnError as e:
    ...     e.filename
    'nonexistent_program_abc123'
    """

    @classmethod
    def from_os_error(cls, error, argv):
        filename = error.filename if error.filename is not None else argv[0]
        return cls(error.errno, error.strerror, filename)


class StreamError(PipeworkError, OSError):
    r"""Raised by :func:`Handle.wait` when a background thread failed to read
    from or write to a child's pipe. A broken pipe while writing
    :func:`Expression.stdin_bytes` input is not an error, because the child
    is allowed to exit without reading all of its input."""

    @classmethod
    def from_os_error(cls, error):
        return cls(error.errno, error.strerror)


class DecodeError(PipeworkError, UnicodeDecodeError):
    r"""Raised by :func:`Expression.read` when the captured output isn't valid
    UTF-8."""

    @classmethod
    def from_unicode_error(cls, error):
        return cls(error.encoding, error.object, error.start, error.end, error.reason)

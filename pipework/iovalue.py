r"""The places a child's standard streams can be connected to.

An :class:`IoValue` stored in an expression describes a redirect target. When
the redirect is evaluated, :func:`IoValue.connect` turns it into a value that
:class:`subprocess.Popen` can use directly, opening files if needed. Values
that the engine opens or duplicates itself are :class:`OwnedHandle` objects,
and the engine closes them once every child that needs them has spawned.
Caller-supplied :class:`BorrowedHandle` values are never closed.
"""

import enum
import os
import subprocess

from pathlib import PurePath


class Stream(enum.Enum):
    STDIN = "stdin"
    STDOUT = "stdout"
    STDERR = "stderr"


class IoValue:
    # The builder suffix used by repr(), as in stdin_path() or stdout_null().
    # None means the generic stdin()/stdout()/stderr() builder.
    builder_suffix = None

    def connect(self, stream, dir):
        r"""Return the value to bind into the execution context for
        ``stream``, and whether the caller now owns it and has to close it.
        """
        return self, False

    def popen_arg(self):
        raise NotImplementedError

    def try_clone(self):
        raise NotImplementedError

    def close(self):
        pass

    def repr_arg(self):
        return ""


class Null(IoValue):
    r"""The null device. Reads return EOF and writes are discarded."""
    builder_suffix = "null"

    def popen_arg(self):
        return subprocess.DEVNULL

    def try_clone(self):
        return self

    def __repr__(self):
        return "Null()"


class Path(IoValue):
    r"""A filepath, opened fresh each time the redirect is evaluated. Relative
    paths are interpreted relative to the working directory in effect at that
    point in the expression. Output paths are created or truncated."""
    builder_suffix = "path"

    def __init__(self, path):
        if not isinstance(path, (str, bytes, PurePath)):
            raise TypeError("Not a valid path: " + repr(path))
        self.path = path

    def connect(self, stream, dir):
        return OwnedHandle(open_path(self.path, stream, dir)), True

    def popen_arg(self):
        raise TypeError("a Path must be connected before spawning")

    def try_clone(self):
        return self

    def repr_arg(self):
        return repr(self.path)

    def __repr__(self):
        return "Path({!r})".format(self.path)


class OwnedHandle(IoValue):
    r"""A file object or raw file descriptor that belongs to this value.
    :func:`close` closes it, and only the first call has any effect. When an
    :class:`OwnedHandle` is stored in an expression, every evaluation uses a
    duplicate of it, so the expression can be run more than once."""

    def __init__(self, file_or_fd):
        self._file = file_or_fd
        self._closed = False

    def fileno(self):
        if self._closed:
            raise ValueError("I/O operation on closed handle")
        return fileno_of(self._file)

    def connect(self, stream, dir):
        return self.try_clone(), True

    def popen_arg(self):
        return self.fileno()

    def try_clone(self):
        return OwnedHandle(os.dup(self.fileno()))

    def close(self):
        if self._closed:
            return
        self._closed = True
        if isinstance(self._file, int):
            os.close(self._file)
        else:
            self._file.close()

    def __repr__(self):
        return "OwnedHandle({!r})".format(self._file)


class PipeEnd(OwnedHandle):
    r"""One end of a pipe created by :func:`new_pipe`.

    Unlike other :class:`OwnedHandle` values, a :class:`PipeEnd` stored in an
    expression is not duplicated. The first evaluation hands the descriptor
    itself to its children and closes it in the parent once they have spawned,
    so the reader on the other end sees EOF when they exit. Evaluating the
    expression again raises :class:`ValueError`."""

    def __init__(self, fd, readable):
        OwnedHandle.__init__(self, fd)
        self.readable = readable

    def connect(self, stream, dir):
        if self._closed:
            raise ValueError("{!r} has already been consumed".format(self))
        return self, True

    def open_file(self):
        r"""Hand the descriptor over to a new binary file object. The file
        object owns it from then on."""
        fd = self.fileno()
        self._closed = True
        return os.fdopen(fd, "rb" if self.readable else "wb")

    def __repr__(self):
        return "PipeEnd({!r}, readable={!r})".format(self._file, self.readable)


class BorrowedHandle(IoValue):
    r"""A file object or raw file descriptor that belongs to the caller. It
    has to stay open for as long as any expression using it is running, and
    it's never closed here. Clones are independent :class:`OwnedHandle`
    duplicates."""
    builder_suffix = "file"

    def __init__(self, file_or_fd):
        self._file = file_or_fd

    def fileno(self):
        return fileno_of(self._file)

    def popen_arg(self):
        return self._file

    def try_clone(self):
        return OwnedHandle(os.dup(self.fileno()))

    def repr_arg(self):
        return repr(self._file)

    def __repr__(self):
        return "BorrowedHandle({!r})".format(self._file)


def new_pipe():
    read_fd, write_fd = os.pipe()
    return PipeEnd(read_fd, readable=True), PipeEnd(write_fd, readable=False)


def fileno_of(file_or_fd):
    if isinstance(file_or_fd, int):
        return file_or_fd
    return file_or_fd.fileno()


def stringify_if_path(x):
    if isinstance(x, PurePath):
        return str(x)
    return x


def open_path(path, stream, dir):
    path = os.fsdecode(path)
    if dir is not None:
        # Note that join does nothing if the path is absolute.
        path = os.path.join(os.fsdecode(dir), path)
    if stream is Stream.STDIN:
        return os.open(path, os.O_RDONLY)
    return os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o666)

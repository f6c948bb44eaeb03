r"""\
pipework is a library for running child processes. It lets you build
pipelines and redirect IO like a shell, as immutable expression objects, and
then run them as many times as you like. Whitespace is never significant,
errors from child processes are reported by default, and pipes are drained on
background threads so that nothing deadlocks on a full pipe buffer.

Examples
--------

Run a command without capturing any output. Here "hi" is printed directly to
the terminal:

>>> from pipework import cmd
>>> cmd("echo", "hi").run() # doctest: +SKIP
hi
Output(status=0, stdout=b'', stderr=b'')

Capture the standard output of a command. Here "hi" is returned as a string:

>>> cmd("echo", "hi").read()
'hi'

Capture the standard output of a pipeline:

>>> cmd("echo", "hi").pipe(cmd("sed", "s/i/o/")).read()
'ho'

Run one command after another, capturing both of their standard error:

>>> first = cmd("bash", "-c", "echo one 1>&2")
>>> second = cmd("bash", "-c", "echo two 1>&2")
>>> first.then(second).stderr_capture().run()
Output(status=0, stdout=b'', stderr=b'one\ntwo\n')

Children that exit with a non-zero status raise an exception by default:

>>> cmd("false").run()
Traceback (most recent call last):
...
pipework.errors.StatusError: Expression cmd('false') returned non-zero exit status: Output(status=1, stdout=b'', stderr=b'')
>>> cmd("false").unchecked().run()
Output(status=1, stdout=b'', stderr=b'')
"""  # noqa: E501

from .errors import (
    DecodeError,
    PipeworkError,
    SpawnError,
    StatusError,
    StreamError,
)
from .expression import Expression, cmd, sh
from .handle import Handle, Output
from .iovalue import (
    BorrowedHandle,
    IoValue,
    Null,
    OwnedHandle,
    Path,
    PipeEnd,
    Stream,
    new_pipe,
)

__all__ = [
    "cmd",
    "sh",
    "Expression",
    "Handle",
    "Output",
    "IoValue",
    "Null",
    "Path",
    "OwnedHandle",
    "BorrowedHandle",
    "PipeEnd",
    "Stream",
    "new_pipe",
    "PipeworkError",
    "StatusError",
    "SpawnError",
    "StreamError",
    "DecodeError",
]

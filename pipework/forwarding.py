import io
import logging
import os
import shutil
import threading

from .errors import StreamError
from .iovalue import new_pipe

logger = logging.getLogger(__name__)


# A thread that sets the daemon flag to true, so that it doesn't block process
# exit. This also includes several other conveniences:
# - It takes a target function argument in its constructor, so that you don't
#   have to subclass it every time you use it.
# - The return value from join() is whatever the target function returned.
# - join() re-raises any exceptions from the target function.
class DaemonicThread(threading.Thread):
    def __init__(self, target, args=(), kwargs=None, **thread_kwargs):
        threading.Thread.__init__(self, **thread_kwargs)
        self.daemon = True
        self._target = target
        self._args = args
        self._kwargs = kwargs or {}
        self._return = None
        self._exception = None

    def run(self):
        try:
            self._return = self._target(*self._args, **self._kwargs)
        except Exception as e:
            self._exception = e

    def join(self):
        threading.Thread.join(self)
        if self._exception is not None:
            raise self._exception
        return self._return


def encode_input(buf):
    if isinstance(buf, str):
        return buf.replace("\n", os.linesep).encode("utf8")
    elif isinstance(buf, (bytes, bytearray, memoryview)):
        return bytes(buf)
    raise TypeError("Not a valid stdin_bytes parameter: " + repr(buf))


def start_input_thread(buf):
    r"""Create a pipe and start a thread that writes ``buf`` into it. Return
    the read end, which the caller owns, and the thread."""
    input_reader = io.BytesIO(encode_input(buf))
    read_end, write_end = new_pipe()
    write_file = write_end.open_file()

    def write_thread():
        # If the write blocks on a full pipe buffer (default 64 KB on Linux),
        # and then the program on the other end quits before reading
        # everything, the write will throw. That's not an error.
        #
        # Note that on macOS, *both* write *and* close can raise a
        # BrokenPipeError. So we put the try on the outside.
        try:
            with write_file:
                shutil.copyfileobj(input_reader, write_file)
        except BrokenPipeError:
            logger.debug("child closed its stdin before reading all input")
        except OSError as e:
            raise StreamError.from_os_error(e) from e

    thread = DaemonicThread(write_thread, name="pipework-stdin")
    thread.start()
    return read_end, thread


# All the stdout_capture() nodes in an expression share one pipe, and likewise
# for stderr_capture(). The write end lives in the execution context, and the
# reader thread drains the read end for as long as any copy of the write end is
# open, so that children never block on a full pipe buffer.
class CaptureReader:
    def __init__(self, name):
        read_end, self.write_end = new_pipe()
        self._read_file = read_end.open_file()
        self._thread = DaemonicThread(self._read_all, name=name)
        self._thread.start()

    def _read_all(self):
        try:
            with self._read_file:
                return self._read_file.read()
        except OSError as e:
            raise StreamError.from_os_error(e) from e

    def close_write_end(self):
        self.write_end.close()

    def join(self):
        return self._thread.join()

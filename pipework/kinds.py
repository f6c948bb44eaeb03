import enum


# Expression and handle node types. Each node is either a leaf (CMD), one of
# the two combinators, or a wrapper that modifies the context of its inner
# expression.
class NodeKind(enum.Enum):
    CMD = "cmd"
    PIPE = "pipe"
    THEN = "then"
    IO = "io"
    STDIN_BYTES = "stdin_bytes"
    STDOUT_CAPTURE = "stdout_capture"
    STDOUT_TO_STDERR = "stdout_to_stderr"
    STDERR_CAPTURE = "stderr_capture"
    STDERR_TO_STDOUT = "stderr_to_stdout"
    STDOUT_STDERR_SWAP = "stdout_stderr_swap"
    DIR = "dir"
    ENV = "env"
    ENV_REMOVE = "env_remove"
    FULL_ENV = "full_env"
    UNCHECKED = "unchecked"
    BEFORE_SPAWN = "before_spawn"


COMBINATORS = (NodeKind.PIPE, NodeKind.THEN)

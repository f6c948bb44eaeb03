r"""Exit status precedence for ``pipe`` and ``then``.

Every finished subtree reduces to an :class:`ExecStatus`. Leaves start out
checked, and :func:`pipework.Expression.unchecked` clears the flag on whatever
its inner subtree reduced to, without touching the code. A pipe picks one of
its children's statuses with :func:`resolve`, and a then with
:func:`resolve_then`. The two only differ when neither side is a checked
failure and the right side exits zero.

>>> resolve(ExecStatus(1, True), ExecStatus(2, True))
ExecStatus(code=2, checked=True)
>>> resolve(ExecStatus(1, True), ExecStatus(2, False))
ExecStatus(code=1, checked=True)
>>> resolve(ExecStatus(1, False), ExecStatus(0, False))
ExecStatus(code=1, checked=False)
>>> resolve_then(ExecStatus(1, False), ExecStatus(0, True))
ExecStatus(code=0, checked=True)
"""

from collections import namedtuple

ExecStatus = namedtuple("ExecStatus", ["code", "checked"])


def is_checked_error(exec_status):
    return exec_status.code != 0 and exec_status.checked


def mark_unchecked(exec_status):
    return exec_status._replace(checked=False)


def resolve(left_status, right_status):
    # A checked failure beats anything unchecked, regardless of side. Between
    # two checked failures, or two unchecked ones, the right side wins. A zero
    # on the right never hides a non-zero on the left.
    if is_checked_error(right_status):
        return right_status
    elif is_checked_error(left_status):
        return left_status
    elif right_status.code != 0:
        return right_status
    else:
        return left_status


def resolve_then(left_status, right_status):
    # The later step's outcome stands, unless it only looks better than an
    # earlier checked failure.
    if is_checked_error(right_status):
        return right_status
    elif is_checked_error(left_status):
        return left_status
    else:
        return right_status

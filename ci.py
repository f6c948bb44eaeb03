import os
import subprocess
import sys

pytest_cmd = [
    sys.executable,
    "-m",
    "pytest",
    "pipework",
    "test_pipework.py",
    "test_resolver.py",
    "--verbose",
]

# The doctests shell out to Unix tools like bash and sed.
if os.name != "nt":
    pytest_cmd.append("--doctest-modules")

print("Executing:", " ".join(pytest_cmd))
subprocess.check_call(pytest_cmd)

print("Executing: flake8")
files = ["pipework", "test_pipework.py", "test_resolver.py", "ci.py"]
subprocess.check_call(["flake8", "--max-line-length=88"] + files)

print("Executing: black --check")
subprocess.check_call(["black", "--check"] + files)

print("Success!")

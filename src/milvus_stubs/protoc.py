"""Locate the protoc compiler used to build the Milvus client bindings."""

import importlib
import importlib.resources
import logging
import os
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import List, Mapping, Optional

from milvus_stubs.defaults import PROTOC_ENV_VAR
from milvus_stubs.errors import GenerationError, ProtocNotFoundError

logger = logging.getLogger(__name__)


class Protoc:
    """A protoc compiler that can be invoked with command line arguments.

    ``last_stderr`` holds the diagnostics of the most recent ``run``.
    """

    name = "protoc"
    last_stderr = ""

    @property
    def include_dirs(self) -> List[Path]:
        """Include directories the compiler ships with (well-known types)."""
        return []

    def run(self, args: List[str]) -> int:
        raise NotImplementedError

    def _record_stderr(self, stderr: str):
        self.last_stderr = stderr
        for line in stderr.splitlines():
            logger.warning(f"protoc: {line}")

    def __str__(self) -> str:
        return self.name


class BundledProtoc(Protoc):
    """The compiler bundled with grpcio-tools, run in-process."""

    name = "grpc_tools.protoc"

    def __init__(self, module):
        self._module = module

    @classmethod
    def load(cls) -> "BundledProtoc":
        try:
            module = importlib.import_module("grpc_tools.protoc")
        except ImportError as e:
            raise ProtocNotFoundError(f"Bundled protoc unavailable: {e}") from e
        return cls(module)

    @property
    def include_dirs(self) -> List[Path]:
        proto_dir = Path(str(importlib.resources.files("grpc_tools") / "_proto"))
        return [proto_dir] if proto_dir.is_dir() else []

    def run(self, args: List[str]) -> int:
        # The in-process compiler writes to fd 2 directly, redirect it to keep
        # the diagnostics
        sys.stderr.flush()
        with tempfile.TemporaryFile() as err:
            saved_fd = os.dup(2)
            os.dup2(err.fileno(), 2)
            try:
                # protoc.main expects argv, including the program name
                returncode = self._module.main([self.name, *args])
            finally:
                os.dup2(saved_fd, 2)
                os.close(saved_fd)
            err.seek(0)
            self._record_stderr(err.read().decode(errors="replace"))
        return returncode


class ExternalProtoc(Protoc):
    """A protoc executable at a filesystem path, run as a subprocess."""

    def __init__(self, path: Path):
        self.path = path
        self.name = str(path)

    def run(self, args: List[str]) -> int:
        cmd = [str(self.path), *args]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise GenerationError(f"Failed to run protoc at {self.path}: {e}") from e

        self._record_stderr(result.stderr)
        return result.returncode


def locate_protoc(environ: Optional[Mapping[str, str]] = None) -> Protoc:
    """Prefer the bundled protoc, fall back to the path in $PROTOC."""
    try:
        protoc = BundledProtoc.load()
        logger.debug("Using bundled protoc from grpcio-tools")
        return protoc
    except ProtocNotFoundError as e:
        logger.debug(str(e))

    if environ is None:
        environ = os.environ
    value = environ.get(PROTOC_ENV_VAR)
    if not value:
        raise ProtocNotFoundError(
            f"{PROTOC_ENV_VAR} not found (bundled protoc unavailable and "
            f"${PROTOC_ENV_VAR} not set)"
        )

    logger.debug(f"Using protoc from ${PROTOC_ENV_VAR}: {value}")
    return ExternalProtoc(Path(value))

"""Run protoc over the Milvus schemas and post-process the generated modules."""

import logging
import os
import re
import shutil
import stat
import sys
import sysconfig
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence

from google.protobuf import descriptor_pb2

from milvus_stubs.config import GeneratorConfig
from milvus_stubs.defaults import CLIENT_PLUGIN_NAME
from milvus_stubs.errors import GenerationError
from milvus_stubs.protoc import Protoc, locate_protoc

logger = logging.getLogger(__name__)

_ABSOLUTE_IMPORT = re.compile(r"^import (\w+_pb2) as (\w+)$", re.MULTILINE)
_GENERATED_SUFFIXES = (".py", ".pyi")


def fix_imports(out_dir: Path) -> List[Path]:
    """Rewrite ``import x_pb2 as y`` into ``from . import x_pb2 as y``.

    Only imports of modules that live in ``out_dir`` are touched, so
    ``google.protobuf`` imports are left alone.
    """
    siblings = {path.stem for path in out_dir.glob("*_pb2.py")}

    def replace(match):
        if match.group(1) in siblings:
            return f"from . import {match.group(1)} as {match.group(2)}"
        return match.group(0)

    changed = []
    for path in sorted(out_dir.iterdir()):
        if path.suffix not in _GENERATED_SUFFIXES or not path.stem.endswith(("_pb2", "_pb2_grpc")):
            continue
        content = path.read_text()
        new_content = _ABSOLUTE_IMPORT.sub(replace, content)
        if new_content != content:
            path.write_text(new_content)
            changed.append(path)
    return changed


def find_client_plugin() -> Optional[Path]:
    """The installed ``protoc-gen-grpc_client`` console script, if any."""
    name = f"protoc-gen-{CLIENT_PLUGIN_NAME}"
    # this interpreter's scripts first, a stale copy on PATH may belong elsewhere
    found = shutil.which(name, path=sysconfig.get_path("scripts")) or shutil.which(name)
    return Path(found) if found else None


def write_plugin_launcher(directory: Path) -> Path:
    """Write an executable that starts the client plugin with this interpreter."""
    if os.name == "nt":
        launcher = directory / f"protoc-gen-{CLIENT_PLUGIN_NAME}.cmd"
        launcher.write_text(f'@"{sys.executable}" -m milvus_stubs.client_plugin %*\r\n')
    else:
        launcher = directory / f"protoc-gen-{CLIENT_PLUGIN_NAME}"
        launcher.write_text(
            f'#!/bin/sh\nexec "{sys.executable}" -m milvus_stubs.client_plugin "$@"\n'
        )
        launcher.chmod(launcher.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return launcher


class StubGenerator:
    """Compile the configured schemas into Python client bindings."""

    def __init__(self, config: GeneratorConfig, protoc: Optional[Protoc] = None):
        self.config = config
        self._protoc = protoc

    @property
    def protoc(self) -> Protoc:
        if self._protoc is None:
            self._protoc = locate_protoc()
        return self._protoc

    def include_dirs(self) -> List[Path]:
        dirs = []
        for include_dir in self.config.include_dirs:
            if include_dir.is_dir():
                dirs.append(include_dir)
            else:
                logger.debug(f"Skipping missing include directory: {include_dir}")
        return dirs + list(self.protoc.include_dirs)

    def build_args(
        self, plugin_launcher: Optional[Path] = None, imported: Sequence[Path] = ()
    ) -> List[str]:
        out_dir = self.config.out_dir
        args = [f"-I{d}" for d in self.include_dirs()]
        args.append(f"--python_out={out_dir}")
        if self.config.pyi:
            args.append(f"--pyi_out={out_dir}")

        if self.config.build_server:
            args.append(f"--grpc_python_out={out_dir}")
        else:
            if plugin_launcher is None:
                raise GenerationError("Client-only generation needs the plugin launcher")
            args.append(f"--plugin=protoc-gen-{CLIENT_PLUGIN_NAME}={plugin_launcher}")
            args.append(f"--{CLIENT_PLUGIN_NAME}_out={out_dir}")

        args.extend(str(p) for p in self.config.proto_files)
        args.extend(str(p) for p in imported)
        return args

    def _run(self, args: List[str], action: str):
        logger.info(f"Running: {self.protoc} {' '.join(args)}")
        returncode = self.protoc.run(args)
        if returncode != 0:
            message = f"protoc ({self.protoc}) exited with status {returncode} while {action}"
            diagnostics = self.protoc.last_stderr.strip()
            if diagnostics:
                message += f":\n{diagnostics}"
            raise GenerationError(message)

    def imported_protos(self, workdir: Path) -> List[Path]:
        """Schemas imported by the configured ones that need modules as well.

        protoc reports the full import closure through a descriptor set.
        ``google/protobuf`` files ship with the protobuf runtime and files
        outside the configured include dirs are left to their owners.
        """
        descriptor_set = workdir / "imports.pb"
        args = [f"-I{d}" for d in self.include_dirs()]
        args.append(f"--descriptor_set_out={descriptor_set}")
        args.append("--include_imports")
        args.extend(str(p) for p in self.config.proto_files)
        self._run(args, f"resolving imports of {len(self.config.proto_files)} proto file(s)")

        files = descriptor_pb2.FileDescriptorSet.FromString(descriptor_set.read_bytes()).file
        configured = {p.resolve() for p in self.config.proto_files}
        search_dirs = [d for d in self.config.include_dirs if d.is_dir()]
        imported = []
        for fd in files:
            if fd.name.startswith("google/protobuf/"):
                continue
            for include_dir in search_dirs:
                candidate = include_dir / fd.name
                if candidate.is_file():
                    if candidate.resolve() not in configured:
                        imported.append(candidate)
                    break
        return imported

    def _check_inputs(self):
        missing = [p for p in self.config.proto_files if not p.is_file()]
        if missing:
            names = ", ".join(str(p) for p in missing)
            raise GenerationError(f"Proto file(s) not found: {names}")

    def _prepare_out_dir(self):
        out_dir = self.config.out_dir
        out_dir.mkdir(parents=True, exist_ok=True)
        init_file = out_dir / "__init__.py"
        if not init_file.exists():
            init_file.touch()

    def generate(self) -> List[Path]:
        """Run the compiler and return the generated files."""
        self._check_inputs()
        self._prepare_out_dir()

        # holds the import descriptor set and, for client-only output, the plugin launcher
        with tempfile.TemporaryDirectory(prefix="milvus-stubs-") as tmp:
            workdir = Path(tmp)
            imported = self.imported_protos(workdir)
            for path in imported:
                logger.info(f"Also compiling imported schema {path}")

            launcher = None
            if not self.config.build_server:
                launcher = find_client_plugin() or write_plugin_launcher(workdir)
            self._run(
                self.build_args(launcher, imported),
                f"compiling {len(self.config.proto_files) + len(imported)} proto file(s)",
            )

        if self.config.relative_imports:
            for path in fix_imports(self.config.out_dir):
                logger.debug(f"Rewrote imports in {path}")

        generated = sorted(
            p for p in self.config.out_dir.iterdir()
            if p.name != "__init__.py" and p.suffix in _GENERATED_SUFFIXES
        )
        logger.info(f"Generated {len(generated)} file(s) in {self.config.out_dir}")
        return generated

    def _outputs_for(self, proto: Path) -> List[Path]:
        suffixes = _GENERATED_SUFFIXES if self.config.pyi else (".py",)
        stem = proto.stem.replace("-", "_")
        return [self.config.out_dir / f"{stem}_pb2{suffix}" for suffix in suffixes]

    def expected_outputs(self) -> List[Path]:
        return [o for proto in self.config.proto_files for o in self._outputs_for(proto)]

    def needs_regeneration(self) -> bool:
        """True when any message module is missing or older than its schema."""
        for proto in self.config.proto_files:
            try:
                proto_mtime = proto.stat().st_mtime
            except FileNotFoundError:
                proto_mtime = 0.0
            for output in self._outputs_for(proto):
                try:
                    if output.stat().st_mtime < proto_mtime:
                        return True
                except FileNotFoundError:
                    return True
        return False

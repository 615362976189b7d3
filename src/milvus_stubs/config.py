import json
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from milvus_stubs.defaults import (
    DEFAULT_INCLUDE_DIRS,
    DEFAULT_OUT_DIR,
    DEFAULT_PROTO_FILES,
)
from milvus_stubs.errors import GenerationError


def _resolve(base: Path, path) -> Path:
    path = Path(path).expanduser()
    return path if path.is_absolute() else base / path


@dataclass
class GeneratorConfig:
    """What to compile, where to look for imports and where to write stubs."""

    root: Path
    out_dir: Path
    proto_files: List[Path]
    include_dirs: List[Path]
    build_server: bool = False
    pyi: bool = True
    relative_imports: bool = True

    @classmethod
    def from_defaults(cls, root: Optional[Path] = None) -> "GeneratorConfig":
        root = Path(root or Path.cwd()).resolve()
        return cls(
            root=root,
            out_dir=_resolve(root, DEFAULT_OUT_DIR),
            proto_files=[_resolve(root, p) for p in DEFAULT_PROTO_FILES],
            include_dirs=[_resolve(root, p) for p in DEFAULT_INCLUDE_DIRS],
        )

    @classmethod
    def for_file_path(
        cls, path: str, root: Optional[Path] = None
    ) -> "GeneratorConfig":
        """Load overrides from a JSON file on top of the defaults.

        Paths inside the file are relative to the file's directory.
        """
        config_path = Path(path).expanduser().resolve()
        try:
            data = json.loads(config_path.read_text())
        except (OSError, ValueError) as e:
            raise GenerationError(f"Cannot read config {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise GenerationError(f"Config {config_path} must contain a JSON object")

        config = cls.from_defaults(root)
        base = config_path.parent
        if "out_dir" in data:
            config.out_dir = _resolve(base, data["out_dir"])
        if "proto_files" in data:
            config.proto_files = [_resolve(base, p) for p in data["proto_files"]]
        if "include_dirs" in data:
            config.include_dirs = [_resolve(base, p) for p in data["include_dirs"]]
        for key in ("build_server", "pyi", "relative_imports"):
            if key in data:
                setattr(config, key, bool(data[key]))
        return config

    def resolve(self, path) -> Path:
        return _resolve(self.root, path)

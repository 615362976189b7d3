import json
import os
from pathlib import Path

import pytest
from google.protobuf import descriptor_pb2

from milvus_stubs import GenerationError, GeneratorConfig, Protoc, StubGenerator
from milvus_stubs import generator
from milvus_stubs.cli import load_config, parse_args, run
from milvus_stubs.generator import fix_imports


class RecordingProtoc(Protoc):
    """Records invocations and writes the files a real protoc would."""

    name = "recording-protoc"

    def __init__(self, returncode=0, include_dirs=(), imports=(), stderr=""):
        self.returncode = returncode
        self._include_dirs = [Path(d) for d in include_dirs]
        self.imports = list(imports)
        self.stderr = stderr
        self.calls = []
        self.launcher_was_executable = None

    @property
    def include_dirs(self):
        return self._include_dirs

    def _write_descriptor_set(self, path, args):
        names = [Path(a).name for a in args if a.endswith(".proto")]
        names += self.imports + ["google/protobuf/descriptor.proto"]
        descriptor_set = descriptor_pb2.FileDescriptorSet()
        for name in names:
            descriptor_set.file.add(name=name)
        Path(path).write_bytes(descriptor_set.SerializeToString())

    def run(self, args):
        self.calls.append(list(args))
        self.last_stderr = self.stderr
        if self.returncode != 0:
            return self.returncode

        for arg in args:
            if arg.startswith("--descriptor_set_out="):
                self._write_descriptor_set(arg.split("=", 1)[1], args)
                return 0
            if arg.startswith("--plugin="):
                launcher = arg.split("=", 2)[2]
                self.launcher_was_executable = os.access(launcher, os.X_OK)

        out_dir = Path(next(a for a in args if a.startswith("--python_out=")).split("=", 1)[1])
        (out_dir / "common_pb2.py").write_text("from google.protobuf import descriptor as _descriptor\n")
        (out_dir / "schema_pb2.py").write_text("import common_pb2 as common__pb2\n")
        (out_dir / "milvus_pb2.py").write_text(
            "import common_pb2 as common__pb2\nimport schema_pb2 as schema__pb2\n"
        )
        (out_dir / "milvus_pb2_grpc.py").write_text(
            "import grpc\n\nimport common_pb2 as common__pb2\nimport milvus_pb2 as milvus__pb2\n"
        )
        return 0


def make_config(root: Path, **kwargs) -> GeneratorConfig:
    proto_dir = root / "milvus-proto" / "proto"
    proto_dir.mkdir(parents=True, exist_ok=True)
    protos = []
    for name in ("common", "milvus", "schema"):
        path = proto_dir / f"{name}.proto"
        path.write_text('syntax = "proto3";\n')
        protos.append(path)
    return GeneratorConfig(
        root=root,
        out_dir=root / "out",
        proto_files=protos,
        include_dirs=[proto_dir, root / "usr-include-missing"],
        **kwargs,
    )


def test_client_only_arguments(tmp_path):
    config = make_config(tmp_path)
    protoc = RecordingProtoc(include_dirs=[tmp_path / "wkt"])

    StubGenerator(config, protoc).generate()

    assert len(protoc.calls) == 2
    resolve_args, args = protoc.calls
    assert "--include_imports" in resolve_args
    assert any(a.startswith("--descriptor_set_out=") for a in resolve_args)
    assert not any(a.startswith("--python_out") for a in resolve_args)
    out_dir = tmp_path / "out"
    assert args[:2] == [f"-I{tmp_path / 'milvus-proto' / 'proto'}", f"-I{tmp_path / 'wkt'}"]
    assert f"--python_out={out_dir}" in args
    assert f"--pyi_out={out_dir}" in args
    assert f"--grpc_client_out={out_dir}" in args
    assert any(a.startswith("--plugin=protoc-gen-grpc_client=") for a in args)
    assert not any(a.startswith("--grpc_python_out") for a in args)
    assert args[-3:] == [str(p) for p in config.proto_files]
    assert protoc.launcher_was_executable


def test_build_server_uses_stock_grpc_generator(tmp_path, monkeypatch):
    def no_plugin(*args):
        raise AssertionError("the client plugin is not used for server stubs")

    monkeypatch.setattr(generator, "find_client_plugin", no_plugin)
    monkeypatch.setattr(generator, "write_plugin_launcher", no_plugin)
    config = make_config(tmp_path, build_server=True, pyi=False)
    protoc = RecordingProtoc()

    StubGenerator(config, protoc).generate()

    args = protoc.calls[-1]
    assert f"--grpc_python_out={tmp_path / 'out'}" in args
    assert not any(a.startswith("--plugin=") for a in args)
    assert not any(a.startswith("--pyi_out") for a in args)


def test_generate_writes_package_and_relative_imports(tmp_path):
    config = make_config(tmp_path)

    generated = StubGenerator(config, RecordingProtoc()).generate()

    out_dir = tmp_path / "out"
    assert (out_dir / "__init__.py").exists()
    assert [p.name for p in generated] == [
        "common_pb2.py", "milvus_pb2.py", "milvus_pb2_grpc.py", "schema_pb2.py",
    ]
    assert "from . import common_pb2 as common__pb2" in (out_dir / "milvus_pb2.py").read_text()
    assert "from . import milvus_pb2 as milvus__pb2" in (out_dir / "milvus_pb2_grpc.py").read_text()


def test_missing_schema_aborts_before_compiling(tmp_path):
    config = make_config(tmp_path)
    config.proto_files[1].unlink()
    protoc = RecordingProtoc()

    with pytest.raises(GenerationError, match="milvus.proto"):
        StubGenerator(config, protoc).generate()
    assert protoc.calls == []


def test_compiler_failure_is_fatal(tmp_path):
    config = make_config(tmp_path)

    with pytest.raises(GenerationError, match="exited with status 1"):
        StubGenerator(config, RecordingProtoc(returncode=1)).generate()


def test_compiler_failure_carries_diagnostics(tmp_path):
    config = make_config(tmp_path)
    protoc = RecordingProtoc(returncode=1, stderr="milvus.proto:3:1: Expected top-level statement.\n")

    with pytest.raises(GenerationError) as excinfo:
        StubGenerator(config, protoc).generate()
    assert "milvus.proto:3:1: Expected top-level statement." in str(excinfo.value)


def test_imported_schemas_are_compiled_too(tmp_path):
    config = make_config(tmp_path)
    proto_dir = tmp_path / "milvus-proto" / "proto"
    (proto_dir / "rg.proto").write_text('syntax = "proto3";\n')
    protoc = RecordingProtoc(imports=["rg.proto", "outside.proto"])

    StubGenerator(config, protoc).generate()

    args = protoc.calls[-1]
    assert args[-4:] == [str(p) for p in config.proto_files] + [str(proto_dir / "rg.proto")]
    assert not any("descriptor.proto" in a or "outside.proto" in a for a in args)


def test_fix_imports_leaves_foreign_modules(tmp_path):
    (tmp_path / "milvus_pb2.py").write_text(
        "from google.protobuf import empty_pb2 as google_dot_protobuf_dot_empty__pb2\n"
        "import common_pb2 as common__pb2\n"
        "import other_pb2 as other__pb2\n"
    )
    (tmp_path / "common_pb2.py").write_text("")
    (tmp_path / "milvus_pb2.pyi").write_text("import common_pb2 as _common_pb2\n")

    changed = fix_imports(tmp_path)

    assert sorted(p.name for p in changed) == ["milvus_pb2.py", "milvus_pb2.pyi"]
    content = (tmp_path / "milvus_pb2.py").read_text()
    assert "from google.protobuf import empty_pb2" in content
    assert "from . import common_pb2 as common__pb2" in content
    assert "import other_pb2 as other__pb2" in content
    assert (tmp_path / "milvus_pb2.pyi").read_text() == "from . import common_pb2 as _common_pb2\n"


def test_needs_regeneration_follows_mtimes(tmp_path):
    config = make_config(tmp_path)
    generator = StubGenerator(config)
    assert generator.needs_regeneration()

    config.out_dir.mkdir()
    for output in generator.expected_outputs():
        output.write_text("")
        os.utime(output, (2_000_000_000, 2_000_000_000))
    for proto in config.proto_files:
        os.utime(proto, (1_000_000_000, 1_000_000_000))
    assert not generator.needs_regeneration()

    os.utime(config.proto_files[0], (2_100_000_000, 2_100_000_000))
    assert generator.needs_regeneration()


def test_config_file_overrides_defaults(tmp_path):
    config_file = tmp_path / "conf" / "stubs.json"
    config_file.parent.mkdir()
    config_file.write_text(json.dumps({
        "out_dir": "generated",
        "proto_files": ["protos/milvus.proto"],
        "include_dirs": ["protos", "/usr/include"],
        "pyi": False,
    }))

    config = GeneratorConfig.for_file_path(str(config_file), root=tmp_path)
    base = config_file.parent.resolve()

    assert config.root == tmp_path.resolve()
    assert config.out_dir == base / "generated"
    assert config.proto_files == [base / "protos" / "milvus.proto"]
    assert config.include_dirs == [base / "protos", Path("/usr/include")]
    assert config.pyi is False
    assert config.build_server is False


def test_unreadable_config_file(tmp_path):
    config_file = tmp_path / "stubs.json"
    config_file.write_text("[1, 2]")
    with pytest.raises(GenerationError, match="JSON object"):
        GeneratorConfig.for_file_path(str(config_file))


def test_defaults_resolve_against_root(tmp_path):
    config = GeneratorConfig.from_defaults(tmp_path)
    root = tmp_path.resolve()
    assert [p.name for p in config.proto_files] == ["common.proto", "milvus.proto", "schema.proto"]
    assert config.proto_files[0].parent == root / "milvus-proto" / "proto"
    assert config.out_dir == root / "src" / "milvus_stubs" / "proto"
    assert config.build_server is False


def test_cli_generate_fails_without_schemas(tmp_path):
    assert run(["--root", str(tmp_path), "generate"]) == 1


def test_cli_check_reports_stale_stubs(tmp_path, capsys):
    assert run(["--root", str(tmp_path), "check"]) == 1
    assert "Regeneration needed" in capsys.readouterr().out


def test_cli_locate(capsys):
    assert run(["locate"]) == 0
    assert capsys.readouterr().out.strip() == "grpc_tools.protoc"


def test_cli_options_after_the_subcommand(tmp_path):
    args = parse_args(["generate", "--root", str(tmp_path), "--out-dir", "stubs", "--no-pyi"])
    assert args.command == "generate"
    assert args.root == tmp_path
    assert args.out_dir == "stubs"
    assert args.no_pyi is True
    assert args.build_server is False

    config = load_config(args)
    assert config.out_dir == tmp_path.resolve() / "stubs"
    assert config.pyi is False

    assert run(["generate", "--root", str(tmp_path)]) == 1


def test_cli_options_before_the_subcommand_survive(tmp_path):
    args = parse_args(["--root", str(tmp_path), "--build-server", "check", "-v"])
    assert args.command == "check"
    assert args.root == tmp_path
    assert args.build_server is True
    assert args.verbose is True


def test_cli_without_subcommand_uses_defaults():
    args = parse_args([])
    assert args.command is None
    assert args.root is None
    assert args.config is None
    assert args.verbose is False


@pytest.mark.skipif(os.name == "nt", reason="uses shell scripts as plugins")
def test_client_plugin_prefers_this_interpreters_scripts(tmp_path, monkeypatch):
    scripts = tmp_path / "scripts"
    elsewhere = tmp_path / "elsewhere"
    for directory in (scripts, elsewhere):
        directory.mkdir()
        plugin = directory / "protoc-gen-grpc_client"
        plugin.write_text("#!/bin/sh\n")
        plugin.chmod(0o755)
    monkeypatch.setenv("PATH", str(elsewhere))
    monkeypatch.setattr(generator.sysconfig, "get_path", lambda name: str(scripts))

    assert generator.find_client_plugin() == scripts / "protoc-gen-grpc_client"

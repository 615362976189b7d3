#!/usr/bin/env python3
"""Setup script for milvus-stubs with generated gRPC client bindings."""

import os
import subprocess
import sys
from pathlib import Path

from setuptools import find_packages, setup
from setuptools.command.build_py import build_py

HERE = Path(__file__).parent.resolve()
PROTO_ROOT = HERE / "milvus-proto" / "proto"


def generate_grpc_files():
    """Generate gRPC client stubs before the package modules are collected."""
    if not PROTO_ROOT.is_dir():
        print(f"Skipping gRPC stub generation: {PROTO_ROOT} not found")
        return

    print("Generating gRPC client stubs...")
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(
        p for p in (str(HERE / "src"), env.get("PYTHONPATH")) if p
    )
    result = subprocess.run(
        [sys.executable, "-m", "milvus_stubs", "generate", "--root", str(HERE)],
        cwd=HERE,
        env=env,
    )
    if result.returncode != 0:
        print("Failed to generate gRPC files")
        sys.exit(1)

    print("gRPC files generated successfully")


class BuildPyWithStubs(build_py):
    def run(self):
        generate_grpc_files()
        super().run()


def main():
    setup(
        name="milvus-stubs",
        version="0.1.0",
        description="Client-only gRPC bindings generated from the Milvus proto schemas",
        package_dir={"": "src"},
        packages=find_packages("src"),
        package_data={"milvus_stubs.proto": ["*.pyi"]},
        python_requires=">=3.9",
        install_requires=[
            "grpcio>=1.59",
            "grpcio-tools>=1.59",
            "protobuf>=4.21",
        ],
        extras_require={
            "test": ["pytest"],
        },
        entry_points={
            "console_scripts": [
                "milvus-stubs=milvus_stubs.cli:main",
                "protoc-gen-grpc_client=milvus_stubs.client_plugin:main",
            ],
        },
        cmdclass={"build_py": BuildPyWithStubs},
    )


if __name__ == "__main__":
    main()

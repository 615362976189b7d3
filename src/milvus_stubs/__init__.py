from milvus_stubs.config import GeneratorConfig
from milvus_stubs.errors import GenerationError, ProtocNotFoundError, StubsError
from milvus_stubs.generator import StubGenerator
from milvus_stubs.protoc import BundledProtoc, ExternalProtoc, Protoc, locate_protoc

__all__ = [
    "BundledProtoc",
    "ExternalProtoc",
    "GenerationError",
    "GeneratorConfig",
    "Protoc",
    "ProtocNotFoundError",
    "StubGenerator",
    "StubsError",
    "locate_protoc",
]

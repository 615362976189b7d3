import os


PROTOC_ENV_VAR = "PROTOC"

DEFAULT_PROTO_ROOT = os.environ.get("MILVUS_STUBS_PROTO_ROOT", "milvus-proto/proto")
DEFAULT_PROTO_FILES = [
    os.path.join(DEFAULT_PROTO_ROOT, "common.proto"),
    os.path.join(DEFAULT_PROTO_ROOT, "milvus.proto"),
    os.path.join(DEFAULT_PROTO_ROOT, "schema.proto"),
]
DEFAULT_INCLUDE_DIRS = [DEFAULT_PROTO_ROOT, "/usr/include"]
DEFAULT_OUT_DIR = os.environ.get("MILVUS_STUBS_OUT_DIR", "src/milvus_stubs/proto")

CLIENT_PLUGIN_NAME = "grpc_client"

"""Generated Milvus client bindings. Populated by ``python -m milvus_stubs``."""

"""protoc plugin emitting client-only gRPC stubs.

The stock ``grpc_python_out`` generator always writes servicer classes and
``add_*_to_server`` helpers. This plugin writes the same ``*_pb2_grpc.py``
module names but only with the ``<Service>Stub`` classes, so the generated
package carries no server-side code.

protoc finds it either as the ``protoc-gen-grpc_client`` console script or
through ``--plugin=protoc-gen-grpc_client=<launcher>``.
"""

import sys
from typing import Dict, Iterable, List, Tuple

from google.protobuf import descriptor_pb2
from google.protobuf.compiler import plugin_pb2

# FileDescriptorProto field numbers used in source_code_info paths
_SERVICE_FIELD = 6
_METHOD_FIELD = 2

_HEADER = "# Generated by the milvus-stubs client plugin. DO NOT EDIT!\n"


class UnresolvedTypeError(Exception):
    pass


def module_name(proto_file: str) -> str:
    """``google/protobuf/empty.proto`` -> ``google.protobuf.empty_pb2``."""
    base = proto_file[: -len(".proto")] if proto_file.endswith(".proto") else proto_file
    return base.replace("-", "_").replace("/", ".") + "_pb2"


def module_alias(name: str) -> str:
    """Alias used by grpc's own generator, e.g. ``milvus__pb2``."""
    return name.replace("_", "__").replace(".", "_dot_")


def import_line(name: str) -> str:
    alias = module_alias(name)
    if "." in name:
        package, _, leaf = name.rpartition(".")
        return f"from {package} import {leaf} as {alias}"
    return f"import {name} as {alias}"


def _walk_messages(prefix: str, messages) -> Iterable[str]:
    for message in messages:
        name = f"{prefix}.{message.name}" if prefix else message.name
        yield name
        yield from _walk_messages(name, message.nested_type)


class TypeIndex:
    """Maps fully qualified proto type names to (module, attribute path)."""

    def __init__(self, files: Iterable[descriptor_pb2.FileDescriptorProto]):
        self._types: Dict[str, Tuple[str, str]] = {}
        for fd in files:
            module = module_name(fd.name)
            for dotted in _walk_messages("", fd.message_type):
                qualified = f".{fd.package}.{dotted}" if fd.package else f".{dotted}"
                self._types[qualified] = (module, dotted)

    def lookup(self, type_name: str) -> Tuple[str, str]:
        try:
            return self._types[type_name]
        except KeyError:
            raise UnresolvedTypeError(f"Unknown message type {type_name}") from None


def _comments(fd: descriptor_pb2.FileDescriptorProto) -> Dict[Tuple[int, ...], str]:
    comments = {}
    for location in fd.source_code_info.location:
        if location.leading_comments:
            comments[tuple(location.path)] = location.leading_comments.strip()
    return comments


def _docstring(text: str, indent: str) -> List[str]:
    text = text.replace("\\", "\\\\").replace('"""', '\\"\\"\\"')
    lines = text.splitlines() or [""]
    if len(lines) == 1:
        return [f'{indent}"""{lines[0]}\n{indent}"""']
    body = [f'{indent}"""{lines[0]}']
    body.extend(f"{indent}{line}".rstrip() for line in lines[1:])
    body.append(f'{indent}"""')
    return body


def _call_kind(method: descriptor_pb2.MethodDescriptorProto) -> str:
    request = "stream" if method.client_streaming else "unary"
    response = "stream" if method.server_streaming else "unary"
    return f"{request}_{response}"


def render_file(fd: descriptor_pb2.FileDescriptorProto, index: TypeIndex) -> str:
    comments = _comments(fd)
    modules = set()
    classes: List[str] = []

    for service_index, service in enumerate(fd.service):
        full_service = f"{fd.package}.{service.name}" if fd.package else service.name
        lines = [f"class {service.name}Stub(object):"]
        doc = comments.get((_SERVICE_FIELD, service_index))
        lines.extend(_docstring(doc or f"Client stub for {full_service}.", "    "))
        lines.append("")
        lines.append("    def __init__(self, channel):")
        lines.append('        """Constructor.')
        lines.append("")
        lines.append("        Args:")
        lines.append("            channel: A grpc.Channel.")
        lines.append('        """')
        if not service.method:
            lines.append("        pass")

        for method_index, method in enumerate(service.method):
            request_module, request_type = index.lookup(method.input_type)
            response_module, response_type = index.lookup(method.output_type)
            modules.update((request_module, response_module))

            doc = comments.get(
                (_SERVICE_FIELD, service_index, _METHOD_FIELD, method_index)
            )
            if doc:
                lines.extend(
                    f"        # {line}".rstrip() for line in doc.splitlines()
                )
            lines.append(f"        self.{method.name} = channel.{_call_kind(method)}(")
            lines.append(f"                '/{full_service}/{method.name}',")
            lines.append(
                f"                request_serializer="
                f"{module_alias(request_module)}.{request_type}.SerializeToString,"
            )
            lines.append(
                f"                response_deserializer="
                f"{module_alias(response_module)}.{response_type}.FromString,"
            )
            lines.append("                )")
        classes.append("\n".join(lines))

    header = [_HEADER, '"""Client-side gRPC stubs for ' + fd.name + '."""', "import grpc", ""]
    header.extend(import_line(name) for name in sorted(modules))
    return "\n".join(header) + "\n\n\n" + "\n\n\n".join(classes) + "\n"


def generate(request: plugin_pb2.CodeGeneratorRequest) -> plugin_pb2.CodeGeneratorResponse:
    response = plugin_pb2.CodeGeneratorResponse()
    response.supported_features = plugin_pb2.CodeGeneratorResponse.FEATURE_PROTO3_OPTIONAL

    index = TypeIndex(request.proto_file)
    by_name = {fd.name: fd for fd in request.proto_file}
    try:
        for name in request.file_to_generate:
            fd = by_name[name]
            if not fd.service:
                continue
            out = response.file.add()
            out.name = module_name(fd.name).replace(".", "/") + "_grpc.py"
            out.content = render_file(fd, index)
    except UnresolvedTypeError as e:
        response.ClearField("file")
        response.error = str(e)
    return response


def main():
    request = plugin_pb2.CodeGeneratorRequest.FromString(sys.stdin.buffer.read())
    response = generate(request)
    sys.stdout.buffer.write(response.SerializeToString())


if __name__ == "__main__":
    main()

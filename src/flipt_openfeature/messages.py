"""Protobuf messages for the Flipt wire types.

The Flipt API definitions are not published as a Python package, so the
subset of ``flipt.proto`` the provider needs is described here and registered
in a private descriptor pool. The resulting classes behave like generated
``_pb2`` messages: they serialize for gRPC and map to proto-JSON through
``google.protobuf.json_format``.
"""

from typing import Optional

import grpc
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

_FieldProto = descriptor_pb2.FieldDescriptorProto

_PACKAGE = "flipt"


def _add_field(
    message: descriptor_pb2.DescriptorProto,
    name: str,
    number: int,
    field_type: int,
    json_name: str,
    label: int = _FieldProto.LABEL_OPTIONAL,
    type_name: Optional[str] = None,
) -> None:
    field = message.field.add(
        name=name,
        number=number,
        type=field_type,
        label=label,
        json_name=json_name,
    )
    if type_name is not None:
        field.type_name = type_name


def _add_string_map(
    message: descriptor_pb2.DescriptorProto,
    name: str,
    number: int,
    json_name: str,
    entry_name: str,
) -> None:
    """Add a ``map<string, string>`` field backed by a nested entry type."""
    entry = message.nested_type.add(name=entry_name)
    entry.options.map_entry = True
    _add_field(entry, "key", 1, _FieldProto.TYPE_STRING, "key")
    _add_field(entry, "value", 2, _FieldProto.TYPE_STRING, "value")
    _add_field(
        message,
        name,
        number,
        _FieldProto.TYPE_MESSAGE,
        json_name,
        label=_FieldProto.LABEL_REPEATED,
        type_name=f".{_PACKAGE}.{message.name}.{entry_name}",
    )


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="flipt_openfeature/flipt.proto",
        package=_PACKAGE,
        syntax="proto3",
    )

    flag = file_proto.message_type.add(name="Flag")
    _add_field(flag, "key", 1, _FieldProto.TYPE_STRING, "key")
    _add_field(flag, "name", 2, _FieldProto.TYPE_STRING, "name")
    _add_field(flag, "description", 3, _FieldProto.TYPE_STRING, "description")
    _add_field(flag, "enabled", 4, _FieldProto.TYPE_BOOL, "enabled")
    _add_field(flag, "namespace_key", 8, _FieldProto.TYPE_STRING, "namespaceKey")

    get_flag = file_proto.message_type.add(name="GetFlagRequest")
    _add_field(get_flag, "key", 1, _FieldProto.TYPE_STRING, "key")
    _add_field(
        get_flag, "namespace_key", 2, _FieldProto.TYPE_STRING, "namespaceKey"
    )

    request = file_proto.message_type.add(name="EvaluationRequest")
    _add_field(request, "request_id", 1, _FieldProto.TYPE_STRING, "requestId")
    _add_field(request, "flag_key", 2, _FieldProto.TYPE_STRING, "flagKey")
    _add_field(request, "entity_id", 3, _FieldProto.TYPE_STRING, "entityId")
    _add_string_map(request, "context", 4, "context", "ContextEntry")
    _add_field(
        request, "namespace_key", 5, _FieldProto.TYPE_STRING, "namespaceKey"
    )

    response = file_proto.message_type.add(name="EvaluationResponse")
    _add_field(response, "request_id", 1, _FieldProto.TYPE_STRING, "requestId")
    _add_field(response, "entity_id", 2, _FieldProto.TYPE_STRING, "entityId")
    _add_string_map(
        response, "request_context", 3, "requestContext", "RequestContextEntry"
    )
    _add_field(response, "match", 4, _FieldProto.TYPE_BOOL, "match")
    _add_field(response, "flag_key", 5, _FieldProto.TYPE_STRING, "flagKey")
    _add_field(response, "segment_key", 6, _FieldProto.TYPE_STRING, "segmentKey")
    _add_field(response, "value", 8, _FieldProto.TYPE_STRING, "value")
    _add_field(
        response,
        "request_duration_millis",
        9,
        _FieldProto.TYPE_DOUBLE,
        "requestDurationMillis",
    )
    _add_field(response, "attachment", 10, _FieldProto.TYPE_STRING, "attachment")
    _add_field(
        response, "namespace_key", 12, _FieldProto.TYPE_STRING, "namespaceKey"
    )

    return file_proto


_POOL = descriptor_pool.DescriptorPool()
_POOL.Add(_build_file())


def _message_class(name: str) -> type:
    return message_factory.GetMessageClass(
        _POOL.FindMessageTypeByName(f"{_PACKAGE}.{name}")
    )


Flag = _message_class("Flag")
GetFlagRequest = _message_class("GetFlagRequest")
EvaluationRequest = _message_class("EvaluationRequest")
EvaluationResponse = _message_class("EvaluationResponse")


class FliptStub:
    """Client stub for the ``flipt.Flipt`` gRPC service."""

    def __init__(self, channel: grpc.Channel) -> None:
        self.GetFlag = channel.unary_unary(
            "/flipt.Flipt/GetFlag",
            request_serializer=GetFlagRequest.SerializeToString,
            response_deserializer=Flag.FromString,
        )
        self.Evaluate = channel.unary_unary(
            "/flipt.Flipt/Evaluate",
            request_serializer=EvaluationRequest.SerializeToString,
            response_deserializer=EvaluationResponse.FromString,
        )

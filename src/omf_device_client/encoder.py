"""Build the OMF messages sent by the client.

Message order on the wire::

    Type (dynamic) → Type (static)* → Container → Data (asset + links)* → Data ...

Steps marked ``*`` are skipped in cloud mode.  All functions here are pure:
no I/O, no clock.  The caller supplies timestamps and readings.
"""

from __future__ import annotations

from typing import Any, Mapping

import orjson

from omf_device_client.config import ProducerConfig
from omf_device_client.errors import ConfigurationError
from omf_device_client.models import (
    ROOT_INDEX,
    AssetRecord,
    Classification,
    ContainerDeclaration,
    DataEvent,
    LinkBatch,
    LinkEndpoint,
    LinkRecord,
    MessageType,
    OmfMessage,
    PropertyDescriptor,
    TypeDefinition,
)

TIMESTAMP_FORMAT = "date-time"
ASSET_INDEX_PROPERTY = "Name"
DATA_INGRESS_METHOD = "OMF"


def encode_dynamic_type(config: ProducerConfig) -> OmfMessage:
    """Time-indexed type for the live readings: index first, then values."""
    config.validate()
    properties: dict[str, PropertyDescriptor] = {
        config.index_property: PropertyDescriptor(
            data_kind="string", is_index=True, format=TIMESTAMP_FORMAT
        ),
    }
    for name, kind in config.data_properties.items():
        properties[name] = PropertyDescriptor(data_kind=kind)

    type_def = TypeDefinition(
        id=config.data_values_type_id,
        classification=Classification.DYNAMIC,
        properties=properties,
    )
    return OmfMessage(MessageType.TYPE, (type_def,))


def encode_static_type(config: ProducerConfig) -> OmfMessage:
    """Asset type; its instances carry the device's static attributes."""
    _require_asset_mode(config, "static type")
    type_def = TypeDefinition(
        id=config.assets_type_id,
        classification=Classification.STATIC,
        properties={
            ASSET_INDEX_PROPERTY: PropertyDescriptor(data_kind="string", is_index=True),
            "Device Type": PropertyDescriptor(data_kind="string"),
            "Location": PropertyDescriptor(data_kind="string"),
            "Data Ingress Method": PropertyDescriptor(data_kind="string"),
        },
    )
    return OmfMessage(MessageType.TYPE, (type_def,))


def encode_container(config: ProducerConfig) -> OmfMessage:
    config.validate()
    container = ContainerDeclaration(id=config.container_id, type_id=config.data_values_type_id)
    return OmfMessage(MessageType.CONTAINER, (container,))


def encode_assets_and_links(config: ProducerConfig) -> OmfMessage:
    """Asset for this device plus the two links that place it.

    The first link hangs the asset under the endpoint's root element, the
    second associates the data container with the asset.  Both use the
    device name as the asset index.
    """
    _require_asset_mode(config, "assets and links")
    asset = AssetRecord(
        type_id=config.assets_type_id,
        values={
            ASSET_INDEX_PROPERTY: config.device_name,
            "Device Type": config.device_type,
            "Location": config.device_location,
            "Data Ingress Method": DATA_INGRESS_METHOD,
        },
    )
    device = LinkEndpoint(type_id=config.assets_type_id, index=config.device_name)
    links = LinkBatch(links=(
        LinkRecord(
            source=LinkEndpoint(type_id=config.assets_type_id, index=ROOT_INDEX),
            target=device,
        ),
        LinkRecord(
            source=device,
            target=LinkEndpoint(container_id=config.container_id),
        ),
    ))
    return OmfMessage(MessageType.DATA, (asset, links))


def encode_data_event(
    container_id: str,
    timestamp: str,
    readings: Mapping[str, Any],
    index_property: str = "Time",
) -> OmfMessage:
    """One row of readings for *container_id*, indexed by *timestamp*.

    The index property is written first; readings follow in the order the
    mapping yields them.
    """
    if not container_id:
        raise ConfigurationError("container id must not be empty")
    row: dict[str, Any] = {index_property: timestamp}
    for name, value in readings.items():
        if name == index_property:
            continue
        row[name] = value
    return OmfMessage(MessageType.DATA, (DataEvent(container_id=container_id, values=(row,)),))


def encode_body(message: OmfMessage) -> bytes:
    """Serialize *message* to the UTF-8 JSON array sent as the request body."""
    return orjson.dumps(message.to_omf())


def _require_asset_mode(config: ProducerConfig, what: str) -> None:
    config.validate()
    if config.cloud_mode:
        raise ConfigurationError(f"{what}: not sent in cloud mode")

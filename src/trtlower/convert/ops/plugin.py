from __future__ import annotations

import logging

from trtlower.errors import InternalError, InvalidArgumentError
from trtlower.graph.node import AttrType

from ..params import OpConverterParams

logger = logging.getLogger(__name__)

# Attribute kinds that can be handed to a plugin as a float list.
_NUMERIC_ATTRS = (AttrType.INT, AttrType.FLOAT, AttrType.LIST_INT, AttrType.LIST_FLOAT)


def convert_plugin(params: OpConverterParams) -> None:
    """Lower a node through a custom-op plugin from the session's factory.

    Plugin ops skip validation, so this only ever runs while building.
    """
    for i, value in enumerate(params.inputs):
        if not value.is_tensor:
            raise InvalidArgumentError(f"Input {i} of plugin op {params.op} must be a tensor, at {params.name}")

    factory = params.session.plugin_factory
    plugin = factory.create_plugin(params.op) if factory is not None else None
    if plugin is None:
        raise InternalError(f"Plugin factory could not create a plugin for {params.op}, at {params.name}")

    for key in params.attrs.keys():
        if params.attrs.raw(key).type not in _NUMERIC_ATTRS:
            logger.debug(f"Skipping non-numeric attribute {key} for plugin op {params.op}")
            continue
        values = list(params.attrs.get(key, AttrType.LIST_FLOAT))
        if not plugin.set_attribute(key, values):
            raise InvalidArgumentError("plugin SetAttribute failed")

    layer = params.network.add_plugin([v.tensor for v in params.inputs], plugin)
    for output in layer.outputs:
        params.add_output(output)

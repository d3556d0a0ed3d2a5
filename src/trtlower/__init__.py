"""trtlower: lower dataflow graphs into a TensorRT-style layer network.

Nodes are converted one at a time by per-op converters that run in two modes:
validate-only (probe whether a node can be lowered) and build (emit layers).
"""

from .config import ConversionParams, PrecisionMode
from .convert import Converter, NodeValidator, convert_graph_to_engine
from .errors import (
    AlreadyExistsError,
    ConversionError,
    FatalError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    OutOfRangeError,
    UnimplementedError,
)
from .graph import AttrValue, DataType, GraphDef, GraphProperties, NodeDef
from .ir import Network

__all__ = [
    "ConversionParams",
    "PrecisionMode",
    "Converter",
    "NodeValidator",
    "convert_graph_to_engine",
    "ConversionError",
    "UnimplementedError",
    "InvalidArgumentError",
    "OutOfRangeError",
    "InternalError",
    "NotFoundError",
    "AlreadyExistsError",
    "FatalError",
    "AttrValue",
    "DataType",
    "GraphDef",
    "GraphProperties",
    "NodeDef",
    "Network",
]

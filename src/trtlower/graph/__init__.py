from .dtypes import DataType
from .node import AttrType, AttrValue, GraphDef, InputRef, NodeDef, canonical_input_name, parse_input_name
from .properties import GraphProperties, PartialShape, TensorProperties

__all__ = [
    "DataType",
    "AttrType",
    "AttrValue",
    "NodeDef",
    "GraphDef",
    "InputRef",
    "parse_input_name",
    "canonical_input_name",
    "GraphProperties",
    "TensorProperties",
    "PartialShape",
]

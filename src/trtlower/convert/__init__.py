"""The lowering core: value model, shape algebra, converters and the driver."""

from .attributes import NodeAttributes
from .converter import Converter, EngineOutputInfo
from .engine import ConversionResult, EngineBuilder, convert_graph_to_engine
from .quantization import QuantizationRanges
from .registry import OpConverterRegistry, build_default_registry, default_registry
from .validator import NodeValidator
from .values import TensorOrWeights
from .weights import ShapedWeights, WeightStore

__all__ = [
    "NodeAttributes",
    "Converter",
    "EngineOutputInfo",
    "ConversionResult",
    "EngineBuilder",
    "convert_graph_to_engine",
    "QuantizationRanges",
    "OpConverterRegistry",
    "build_default_registry",
    "default_registry",
    "NodeValidator",
    "TensorOrWeights",
    "ShapedWeights",
    "WeightStore",
]

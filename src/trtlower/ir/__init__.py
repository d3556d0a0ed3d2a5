from .dtypes import MAX_DIMS, DType, float16, float32, int8, int32
from .layers import (
	ActivationType,
	ElementWiseOperation,
	Layer,
	MatrixOperation,
	NetworkDefinitionError,
	PoolingType,
	ReduceOperation,
	ScaleMode,
	TopKOperation,
	UnaryOperation,
)
from .network import Network
from .plugins import BatchedNMSPlugin, PluginFactory, PluginField, PluginFieldType, PluginRegistry
from .tensor import Shape, Tensor, Weights

__all__ = [
	"MAX_DIMS",
	"DType",
	"float32",
	"float16",
	"int8",
	"int32",
	"Network",
	"NetworkDefinitionError",
	"Layer",
	"Tensor",
	"Shape",
	"Weights",
	"ActivationType",
	"ElementWiseOperation",
	"MatrixOperation",
	"PoolingType",
	"ReduceOperation",
	"ScaleMode",
	"TopKOperation",
	"UnaryOperation",
	"BatchedNMSPlugin",
	"PluginFactory",
	"PluginField",
	"PluginFieldType",
	"PluginRegistry",
]

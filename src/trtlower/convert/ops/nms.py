from __future__ import annotations

import logging

from trtlower.errors import InternalError, InvalidArgumentError
from trtlower.graph.node import AttrType
from trtlower.ir.plugins import PluginField
from trtlower.ir.tensor import Tensor

from ..params import OpConverterParams, check_input_kinds
from ..values import TensorOrWeights
from ..weights import ShapedWeights

logger = logging.getLogger(__name__)

NMS_PLUGIN_NAME = "BatchedNMS_TRT"
NMS_PLUGIN_VERSION = "1"


def _scalar(params: OpConverterParams, weights: ShapedWeights, what: str) -> float:
    # Source scalars arrive as 1-D weights with a single entry.
    if weights.rank != 1 or weights.count() != 1:
        raise InvalidArgumentError(f"TensorRT BatchedNMS Plugin {what} must be 0-D {params.name}")
    return weights.values[0].item()


def convert_combined_nms(params: OpConverterParams) -> None:
    check_input_kinds(
        params,
        [
            ("boxes", False),
            ("scores", False),
            ("max_output_size_per_class", True),
            ("max_total_size", True),
            ("iou_threshold", True),
            ("score_threshold", True),
        ],
    )
    boxes, scores = params.inputs[0], params.inputs[1]
    if boxes.rank != 3:
        raise InvalidArgumentError(f"TensorRT BatchedNMS Plugin input boxes must be 3-D excluding batch {params.name}")
    if scores.rank != 2:
        raise InvalidArgumentError(f"TensorRT BatchedNMS Plugin input scores must be 2-D excluding batch {params.name}")
    num_classes = scores.dims[1]
    if boxes.dims[1] not in (1, num_classes):
        raise InvalidArgumentError(
            f"TensorRT BatchedNMS Plugin third dimension of boxes must be either 1 or num_classes {params.name}"
        )

    max_size_per_class = int(_scalar(params, params.inputs[2].weights, "max_output_size_per_class"))
    if max_size_per_class <= 0:
        raise InvalidArgumentError(f"TensorRT BatchedNMS Plugin max_output_size_per_class should be > 0 {params.name}")
    max_total_size = int(_scalar(params, params.inputs[3].weights, "max_total_size"))
    if max_total_size <= 0:
        raise InvalidArgumentError(f"TensorRT BatchedNMS Plugin max_total_size should be > 0 {params.name}")
    iou_threshold = float(_scalar(params, params.inputs[4].weights, "iou_threshold"))
    if iou_threshold < 0.0 or iou_threshold > 1.0:
        raise InvalidArgumentError(f"TensorRT BatchedNMS Plugin iou_threshold must be in [0, 1] {params.name}")
    score_threshold = float(_scalar(params, params.inputs[5].weights, "score_threshold"))
    if params.validation_only:
        return

    if params.attrs.get_or("pad_per_class", AttrType.BOOL, False):
        top_k = min(max_size_per_class * num_classes, max_total_size)
    else:
        top_k = max_total_size
    # The source op always works on normalized coordinates.
    fields = [
        PluginField.int32("shareLocation", boxes.dims[1] == 1),
        PluginField.int32("backgroundLabelId", -1),
        PluginField.int32("numClasses", num_classes),
        PluginField.int32("topK", top_k),
        PluginField.int32("keepTopK", top_k),
        PluginField.float32("scoreThreshold", score_threshold),
        PluginField.float32("iouThreshold", iou_threshold),
        PluginField.int32("isNormalized", True),
    ]

    converter = params.session
    creator = converter.plugin_registry.get_plugin_creator(NMS_PLUGIN_NAME, NMS_PLUGIN_VERSION)
    if creator is None:
        logger.warning(f"Plugin creator {NMS_PLUGIN_NAME} version {NMS_PLUGIN_VERSION} is not registered")
        raise InternalError(f"Plugin creator {NMS_PLUGIN_NAME} v{NMS_PLUGIN_VERSION} not found, at {params.name}")
    plugin = creator.create_plugin(params.name, fields)
    if plugin is None:
        raise InternalError(f"Failed to create {NMS_PLUGIN_NAME} plugin, at {params.name}")
    layer = params.network.add_plugin([boxes.tensor, scores.tensor], plugin)

    def shrink_last_dim(tensor: Tensor) -> Tensor:
        if tensor.dims[-1] != 1:
            raise InternalError(f"Expect last dims to be 1, for tensor {tensor.name} {tensor.dims}")
        return converter.prepare_tensor_for_shape(
            TensorOrWeights.from_tensor(tensor), tensor.dims[:-1], validation_only=False
        )

    # Source output order: boxes, scores, classes, num_detections.
    params.add_output(layer.get_output(1))
    params.add_output(shrink_last_dim(layer.get_output(2)))
    params.add_output(shrink_last_dim(layer.get_output(3)))
    params.add_output(shrink_last_dim(layer.get_output(0)))

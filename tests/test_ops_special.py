"""Batch norm, quantization ops, combined NMS and custom-op plugin tests."""

import numpy as np
import pytest

from trtlower.config import PrecisionMode
from trtlower.errors import InternalError, InvalidArgumentError, UnimplementedError
from trtlower.graph import DataType
from trtlower.ir import ScaleMode, float32, int32
from trtlower.ir.plugins import PluginFactory, PluginRegistry


# =============================================================================
# FusedBatchNorm
# =============================================================================


class TestFusedBatchNorm:
    """Inference batch norm folded into one scale layer."""

    def _params(self, harness, scale, offset, mean, variance, dtype=DataType.DT_FLOAT):
        for name, values in (("scale", scale), ("offset", offset), ("mean", mean), ("var", variance)):
            harness.add_weights(name, values, dtype=dtype)

    def _bn(self, node, op="FusedBatchNorm", **attrs):
        attrs.setdefault("epsilon", 1.0)
        attrs.setdefault("data_format", "NCHW")
        attrs.setdefault("is_training", False)
        return node(op, "x", "scale", "offset", "mean", "var", **attrs)

    @pytest.mark.parametrize("op", ["FusedBatchNorm", "FusedBatchNormV2"])
    def test_folds_parameters(self, harness, node, op):
        harness.add_tensor("x", (3, 2, 2))
        self._params(harness, [1, 2, 3], [0, 0, 1], [1, 1, 1], [3, 3, 3])
        (out,) = harness.run_both(self._bn(node, op))
        assert out.dims == (3, 2, 2)
        layer = out.tensor.producer
        assert layer.mode is ScaleMode.CHANNEL
        np.testing.assert_allclose(layer.scale.values, [0.5, 1.0, 1.5])
        np.testing.assert_allclose(layer.shift.values, [-0.5, -1.0, -0.5])
        assert layer.power.count == 0

    def test_single_values_are_uniform(self, harness, node):
        harness.add_tensor("x", (3, 2, 2))
        self._params(harness, [2], [1], [0], [3])
        (out,) = harness.run_both(self._bn(node))
        layer = out.tensor.producer
        assert layer.mode is ScaleMode.UNIFORM
        np.testing.assert_allclose(layer.scale.values, [1.0])
        np.testing.assert_allclose(layer.shift.values, [1.0])

    def test_single_values_broadcast_against_channels(self, harness, node):
        harness.add_tensor("x", (3, 2, 2))
        self._params(harness, [1, 2, 3], [1], [0], [1])
        (out,) = harness.run_both(self._bn(node, epsilon=0.0))
        layer = out.tensor.producer
        np.testing.assert_allclose(layer.scale.values, [1.0, 2.0, 3.0])
        np.testing.assert_allclose(layer.shift.values, [1.0, 1.0, 1.0])

    def test_half_parameters(self, harness, node):
        harness.add_tensor("x", (3, 2, 2))
        self._params(harness, [1, 2, 3], [0, 0, 1], [1, 1, 1], [3, 3, 3], dtype=DataType.DT_HALF)
        (out,) = harness.run_both(self._bn(node))
        assert out.tensor.producer.scale.values.dtype == np.float16

    def test_nhwc_is_unimplemented(self, harness, node):
        harness.add_tensor("x", (2, 2, 3))
        self._params(harness, [1, 2, 3], [0, 0, 1], [1, 1, 1], [3, 3, 3])
        assert harness.run_both(self._bn(node, data_format="NHWC")) is UnimplementedError

    def test_training_mode_is_unimplemented(self, harness, node, caplog):
        harness.add_tensor("x", (3, 2, 2))
        self._params(harness, [1, 2, 3], [0, 0, 1], [1, 1, 1], [3, 3, 3])
        bn = node("FusedBatchNorm", "x", "scale", "offset", "mean", "var", data_format="NCHW")
        assert harness.run_both(bn) is UnimplementedError
        assert "is_training=false" in caplog.text

    def test_inconsistent_counts(self, harness, node):
        harness.add_tensor("x", (3, 2, 2))
        self._params(harness, [1, 2, 3], [0, 0], [1, 1, 1], [3, 3, 3])
        assert harness.run_both(self._bn(node)) is InvalidArgumentError

    def test_count_must_match_channels(self, harness, node):
        harness.add_tensor("x", (3, 2, 2))
        self._params(harness, [1, 2, 3, 4], [0, 0, 1, 1], [1, 1, 1, 1], [3, 3, 3, 3])
        assert harness.run_both(self._bn(node)) is InvalidArgumentError

    def test_integer_parameters(self, harness, node):
        harness.add_tensor("x", (3, 2, 2))
        self._params(harness, [1, 2, 3], [0, 0, 1], [1, 1, 1], [3, 3, 3], dtype=DataType.DT_INT32)
        assert harness.run_both(self._bn(node)) is UnimplementedError

    def test_mixed_parameter_types(self, harness, node):
        harness.add_tensor("x", (3, 2, 2))
        harness.add_weights("scale", [1, 2, 3], dtype=DataType.DT_HALF)
        for name in ("offset", "mean", "var"):
            harness.add_weights(name, [1, 1, 1])
        assert harness.run_both(self._bn(node)) is UnimplementedError


# =============================================================================
# Quantization ops
# =============================================================================


class TestQuantize:
    """Range-recording ops that pass their input through."""

    @pytest.fixture
    def int8(self, make_harness):
        harness = make_harness(PrecisionMode.INT8)
        harness.add_tensor("x", (4,))
        return harness

    def test_min_max_args(self, int8, node):
        x = int8.converter.get_tensor_or_weights("x")
        (out,) = int8.run_both(node("FakeQuantWithMinMaxArgs", "x", min=-2.0, max=1.5))
        assert out.tensor is x.tensor
        assert int8.converter.quantization.get(x.tensor) == 2.0
        assert int8.network.num_layers == 0

    @pytest.mark.parametrize(
        "op,extra",
        [
            ("FakeQuantWithMinMaxVars", []),
            ("QuantizeAndDequantizeV2", []),
            ("QuantizeAndDequantizeV3", ["bits"]),
        ],
    )
    def test_range_from_inputs(self, int8, node, op, extra):
        int8.add_weights("min", -3.0)
        int8.add_weights("max", 1.0)
        int8.add_weights("bits", 8, dtype=DataType.DT_INT32)
        (out,) = int8.run_both(node(op, "x", "min", "max", *extra))
        assert int8.converter.quantization.get(out.tensor) == 3.0

    def test_missing_attribute(self, int8, node):
        assert int8.run_both(node("FakeQuantWithMinMaxArgs", "x", min=-2.0)) is InvalidArgumentError

    def test_empty_range_input(self, int8, node):
        int8.add_weights("min", [])
        int8.add_weights("max", 1.0)
        assert int8.run_both(node("FakeQuantWithMinMaxVars", "x", "min", "max")) is InvalidArgumentError

    def test_range_must_be_constant(self, int8, node):
        int8.add_tensor("min", (1,))
        int8.add_weights("max", 1.0)
        assert int8.run_both(node("FakeQuantWithMinMaxVars", "x", "min", "max")) is UnimplementedError

    def test_only_supported_in_int8(self, harness, node):
        harness.add_tensor("x", (4,))
        fake_quant = node("FakeQuantWithMinMaxArgs", "x", min=-2.0, max=2.0)
        with pytest.raises(UnimplementedError):
            harness.validate(fake_quant)
        # The converter itself accepts the op in any mode.
        (out,) = harness.build(fake_quant)
        assert harness.converter.quantization.get(out.tensor) == 2.0


# =============================================================================
# CombinedNonMaxSuppression
# =============================================================================


class TestCombinedNMS:
    """Lowering onto the BatchedNMS plugin."""

    def _inputs(self, harness, q=1, classes=3, per_class=5, total=8, iou=0.5, score=0.1):
        harness.add_tensor("boxes", (10, q, 4))
        harness.add_tensor("scores", (10, classes))
        harness.add_weights("per_class", per_class, dtype=DataType.DT_INT32)
        harness.add_weights("total", total, dtype=DataType.DT_INT32)
        harness.add_weights("iou", iou)
        harness.add_weights("score", score)

    def _nms(self, node, **attrs):
        return node(
            "CombinedNonMaxSuppression", "boxes", "scores", "per_class", "total", "iou", "score", **attrs
        )

    def test_outputs(self, harness, node):
        self._inputs(harness)
        boxes, scores, classes, count = harness.run_both(self._nms(node))
        assert boxes.dims == (8, 4)
        assert scores.dims == (8,)
        assert classes.dims == (8,)
        assert count.dims == ()
        assert count.dtype == int32
        assert scores.dtype == float32
        assert [t.tensor.name for t in (boxes, scores, classes, count)] == ["op", "op:1", "op:2", "op:3"]
        plugin = harness.network.layers_of_kind("Plugin")[0].plugin
        assert plugin.share_location
        assert plugin.num_classes == 3
        assert plugin.background_label_id == -1
        assert plugin.is_normalized

    def test_pad_per_class_limits_top_k(self, harness, node):
        self._inputs(harness, per_class=2, total=8)
        boxes, *_ = harness.run_both(self._nms(node, pad_per_class=True))
        assert boxes.dims == (6, 4)

    def test_boxes_per_class(self, harness, node):
        self._inputs(harness, q=3)
        harness.run_both(self._nms(node))
        plugin = harness.network.layers_of_kind("Plugin")[0].plugin
        assert not plugin.share_location

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"q": 2},
            {"per_class": 0},
            {"total": -1},
            {"iou": 1.5},
            {"per_class": [1, 2]},
        ],
    )
    def test_rejected_inputs(self, harness, node, kwargs):
        self._inputs(harness, **kwargs)
        assert harness.run_both(self._nms(node)) is InvalidArgumentError

    def test_scores_rank(self, harness, node):
        harness.add_tensor("boxes", (10, 1, 4))
        harness.add_tensor("scores", (10, 3, 1))
        for name in ("per_class", "total"):
            harness.add_weights(name, 4, dtype=DataType.DT_INT32)
        harness.add_weights("iou", 0.5)
        harness.add_weights("score", 0.1)
        assert harness.run_both(self._nms(node)) is InvalidArgumentError

    def test_missing_plugin_creator(self, harness, node):
        harness.converter.plugin_registry = PluginRegistry()
        self._inputs(harness)
        nms = self._nms(node)
        harness.validate(nms)
        with pytest.raises(InternalError, match="BatchedNMS_TRT"):
            harness.build(nms)


# =============================================================================
# Custom op plugins
# =============================================================================


class RecordingPlugin:
    plugin_type = "Recording"

    def __init__(self, accept=True):
        self.accept = accept
        self.attributes = {}

    def set_attribute(self, key, values):
        self.attributes[key] = values
        return self.accept

    def get_output_dimensions(self, input_dims, input_dtypes):
        return [(input_dims[0], input_dtypes[0]), ((1,), input_dtypes[0])]


class TestCustomPlugin:
    """Ops routed through a plugin factory bypass the converter table."""

    def _harness(self, make_harness, constructor):
        factory = PluginFactory()
        factory.register("MyOp", constructor)
        harness = make_harness(plugin_factory=factory)
        harness.add_tensor("x", (2, 3))
        return harness

    def test_numeric_attributes_are_forwarded(self, make_harness, node):
        plugins = []

        def construct():
            plugins.append(RecordingPlugin())
            return plugins[-1]

        harness = self._harness(make_harness, construct)
        first, second = harness.run_both(node("MyOp", "x", alpha=0.5, sizes=[1, 2], mode="fast"))
        assert first.dims == (2, 3)
        assert second.dims == (1,)
        assert second.tensor.name == "op:1"
        assert plugins[0].attributes == {"alpha": [0.5], "sizes": [1.0, 2.0]}

    def test_rejected_attribute(self, make_harness, node):
        harness = self._harness(make_harness, lambda: RecordingPlugin(accept=False))
        op = node("MyOp", "x", alpha=0.5)
        harness.validate(op)
        with pytest.raises(InvalidArgumentError, match="SetAttribute"):
            harness.build(op)

    def test_factory_returns_nothing(self, make_harness, node):
        harness = self._harness(make_harness, lambda: None)
        with pytest.raises(InternalError):
            harness.build(node("MyOp", "x"))

    def test_weights_input(self, make_harness, node):
        harness = self._harness(make_harness, RecordingPlugin)
        harness.add_weights("w", [1.0, 2.0])
        with pytest.raises(InvalidArgumentError):
            harness.build(node("MyOp", "x", "w"))

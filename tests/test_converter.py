"""Build-session tests: value table, node dispatch, engine outputs, helpers."""

import numpy as np
import pytest

from trtlower.config import PrecisionMode
from trtlower.convert.converter import INPUT_PH_NAME, Converter, EngineOutputInfo, is_engine_input, is_engine_output
from trtlower.convert.params import check_input_kinds
from trtlower.convert.registry import OpConverterRegistry
from trtlower.convert.values import TensorOrWeights
from trtlower.convert.weights import WeightStore
from trtlower.errors import (
    AlreadyExistsError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    UnimplementedError,
)
from trtlower.graph import DataType, NodeDef
from trtlower.ir import ActivationType, float16, float32


def _fork(params):
    """Two relu outputs of one tensor input."""
    check_input_kinds(params, [("x", False)])
    if params.validation_only:
        return
    x = params.inputs[0].tensor
    for _ in range(2):
        params.add_output(params.network.add_activation(x, ActivationType.RELU).get_output(0))


def _broken(params):
    if params.validation_only:
        return
    # 6 elements cannot become 5.
    params.network.add_shuffle(params.inputs[0].tensor, reshape_dims=(5,))


def _registry():
    registry = OpConverterRegistry()
    registry.register("Fork", _fork)
    registry.register("Broken", _broken)
    return registry.freeze()


@pytest.fixture
def converter():
    conv = Converter(registry=_registry())
    conv.add_input_tensor("x", float32, (2, 3), 1)
    return conv


# =============================================================================
# Value Table
# =============================================================================


class TestValueTable:
    """Names map to exactly one value each."""

    def test_duplicate_name_is_rejected(self, converter):
        with pytest.raises(AlreadyExistsError, match="already exist"):
            converter.add_tensor_or_weights("x", TensorOrWeights.placeholder(float32, (1,)))

    def test_missing_name_is_not_found(self, converter):
        with pytest.raises(NotFoundError):
            converter.get_tensor_or_weights("nope")

    def test_values_view_is_read_only(self, converter):
        assert set(converter.values) == {"x"}
        with pytest.raises(TypeError):
            converter.values["y"] = None

    def test_tensors_take_the_session_batch_size(self, converter):
        converter.add_tensor_or_weights("y", TensorOrWeights.placeholder(float32, (3,)))
        assert converter.get_tensor_or_weights("y").batch_size == 1

    def test_conflicting_tensor_batch_size(self, converter):
        with pytest.raises(InvalidArgumentError, match="batch size"):
            converter.add_tensor_or_weights("y", TensorOrWeights.placeholder(float32, (3,), batch_size=4))

    def test_batch_size_is_fixed_once_known(self):
        conv = Converter()
        conv.maybe_update_batch_size(-1)
        assert conv.batch_size == -1
        conv.maybe_update_batch_size(8)
        conv.maybe_update_batch_size(-1)
        conv.maybe_update_batch_size(8)
        assert conv.batch_size == 8
        with pytest.raises(InvalidArgumentError, match="does not match"):
            conv.maybe_update_batch_size(4)

    def test_weights_are_stored_without_batch(self, converter):
        w = WeightStore().get_temp_weights(float32, (2,))
        converter.add_tensor_or_weights("w", TensorOrWeights.from_weights(w))
        assert converter.get_tensor_or_weights("w").is_weights


# =============================================================================
# Node Conversion
# =============================================================================


class TestConvertNode:
    """Dispatch, input resolution and output naming."""

    def test_outputs_are_named_by_index(self, converter):
        outputs = converter.convert_node(NodeDef.make("f", "Fork", ["x"]))
        assert [o.tensor.name for o in outputs] == ["f", "f:1"]
        assert converter.get_tensor_or_weights("f:1").tensor is outputs[1].tensor

    def test_indexed_inputs_resolve(self, converter):
        converter.convert_node(NodeDef.make("f", "Fork", ["x"]))
        outputs = converter.convert_node(NodeDef.make("g", "Fork", ["f:1"]))
        assert outputs[0].tensor.producer.inputs[0].name == "f:1"

    def test_unknown_op_is_unimplemented(self, converter):
        with pytest.raises(UnimplementedError, match="No converter"):
            converter.convert_node(NodeDef.make("n", "Frobnicate", ["x"]))

    def test_missing_input_is_invalid(self, converter):
        with pytest.raises(InvalidArgumentError, match="not available"):
            converter.convert_node(NodeDef.make("f", "Fork", ["y"]))

    def test_control_inputs_are_skipped(self, converter):
        outputs = converter.convert_node(NodeDef.make("f", "Fork", ["x", "^ghost"]))
        assert len(outputs) == 2

    def test_backend_rejection_becomes_internal_error(self, converter):
        with pytest.raises(InternalError, match="Failed to build layer for b") as info:
            converter.convert_node(NodeDef.make("b", "Broken", ["x"]))
        assert info.value.node_name == "b"

    def test_engine_inputs_keep_their_name(self):
        conv = Converter()
        name = f"{INPUT_PH_NAME}0"
        conv.add_input_tensor(name, float32, (3,), 1)
        (out,) = conv.convert_node(NodeDef.make("id", "Identity", [name], T=DataType.DT_FLOAT))
        assert out.tensor.name == name
        assert conv.get_tensor_or_weights("id").tensor is out.tensor

    def test_const_is_stored_as_weights(self):
        conv = Converter()
        conv.convert_node(
            NodeDef.make("c", "Const", value=np.array([1.0, 2.0], dtype=np.float32), dtype=DataType.DT_FLOAT)
        )
        value = conv.get_tensor_or_weights("c")
        assert value.is_weights
        assert value.weights.to_list() == [1.0, 2.0]
        assert conv.network.num_layers == 0


# =============================================================================
# Engine Outputs
# =============================================================================


class TestRenameAndMarkOutputs:
    """Binding converted values as named network outputs."""

    def test_marks_and_renames(self, converter):
        converter.convert_node(NodeDef.make("f", "Fork", ["x"]))
        converter.rename_and_mark_output_tensors(
            [EngineOutputInfo("f:1", "TensorRTOutputPH_0", DataType.DT_HALF)]
        )
        (out,) = converter.network.outputs
        assert out.name == "TensorRTOutputPH_0"
        assert out.dtype == float16
        assert out is converter.get_tensor_or_weights("f:1").tensor

    def test_input_passthrough_goes_through_identity_shuffle(self, converter):
        converter.rename_and_mark_output_tensors([EngineOutputInfo("x", "out", DataType.DT_FLOAT)])
        (out,) = converter.network.outputs
        assert out.name == "out"
        assert out.producer.kind == "Shuffle"
        assert converter.network.inputs[0].name == "x"

    def test_same_tensor_bound_twice(self, converter):
        converter.convert_node(NodeDef.make("f", "Fork", ["x"]))
        converter.rename_and_mark_output_tensors(
            [EngineOutputInfo("f", "a", DataType.DT_FLOAT), EngineOutputInfo("f", "b", DataType.DT_FLOAT)]
        )
        assert [t.name for t in converter.network.outputs] == ["a", "b"]

    def test_weights_cannot_be_outputs(self, converter):
        w = WeightStore().get_temp_weights(float32, (2,))
        converter.add_tensor_or_weights("w", TensorOrWeights.from_weights(w))
        with pytest.raises(InvalidArgumentError, match="is weights not tensor"):
            converter.rename_and_mark_output_tensors([EngineOutputInfo("w", "out", DataType.DT_FLOAT)])

    def test_unknown_source_is_not_found(self, converter):
        with pytest.raises(NotFoundError):
            converter.rename_and_mark_output_tensors([EngineOutputInfo("nope", "out", DataType.DT_FLOAT)])


def test_engine_placeholder_names() -> None:
    assert is_engine_input("TensorRTInputPH_3")
    assert not is_engine_input("TensorRTOutputPH_3")
    assert is_engine_output("TensorRTOutputPH_0")


# =============================================================================
# Layer Helpers
# =============================================================================


class TestTransposeTensor:
    """Permutations are given with the batch dim in front."""

    def test_transpose(self, converter):
        x = converter.get_tensor_or_weights("x").tensor
        out = converter.transpose_tensor(x, (0, 2, 1))
        assert out.dims == (3, 2)
        assert out.producer.first_transpose == (1, 0)

    def test_rank_mismatch(self, converter):
        x = converter.get_tensor_or_weights("x").tensor
        with pytest.raises(InvalidArgumentError, match="Rank of perm"):
            converter.transpose_tensor(x, (0, 1))

    def test_batch_axis_moved(self, converter):
        x = converter.get_tensor_or_weights("x").tensor
        with pytest.raises(UnimplementedError, match="batch dimension"):
            converter.transpose_tensor(x, (1, 0, 2))


class TestPrepareTensorForShape:
    """Reshape tensors, materialize weights."""

    def test_same_dims_is_a_no_op(self, converter):
        value = converter.get_tensor_or_weights("x")
        assert converter.prepare_tensor_for_shape(value, (2, 3), validation_only=False) is value.tensor
        assert converter.network.num_layers == 0

    def test_reshape_adds_shuffle(self, converter):
        value = converter.get_tensor_or_weights("x")
        out = converter.prepare_tensor_for_shape(value, (6, 1), validation_only=False)
        assert out.dims == (6, 1)
        assert out.producer.kind == "Shuffle"

    def test_validation_only_checks_but_builds_nothing(self, converter):
        value = converter.get_tensor_or_weights("x")
        assert converter.prepare_tensor_for_shape(value, (3, 2), validation_only=True) is None
        with pytest.raises(InvalidArgumentError):
            converter.prepare_tensor_for_shape(value, (4,), validation_only=True)
        assert converter.network.num_layers == 0

    def test_weights_become_constant_layer(self, converter):
        w = converter.weight_store.copy_from_array(np.arange(6, dtype=np.float32), float32)
        out = converter.prepare_tensor_for_shape(TensorOrWeights.from_weights(w), (2, 3), validation_only=False)
        assert out.dims == (2, 3)
        assert out.producer.kind == "Constant"

    def test_int8_constant_gets_weight_range(self):
        conv = Converter(precision_mode=PrecisionMode.INT8, use_calibration=False)
        w = conv.weight_store.copy_from_array(np.array([-2.0, 3.0], dtype=np.float32), float32)
        out = conv.prepare_tensor_for_shape(TensorOrWeights.from_weights(w), (2,), validation_only=False)
        assert conv.quantization.get(out) == 3.0

    def test_int8_all_zero_constant_gets_full_range(self):
        conv = Converter(precision_mode=PrecisionMode.INT8, use_calibration=False)
        w = conv.weight_store.get_temp_weights(float32, (4,))
        out = conv.prepare_tensor_for_shape(TensorOrWeights.from_weights(w), (2, 2), validation_only=False)
        assert conv.quantization.get(out) == 127.0


def test_weight_range() -> None:
    conv = Converter()
    w = conv.weight_store.copy_from_array(np.array([4, -7, 1], dtype=np.int32), float32)
    assert conv.get_weight_range(w) == (-7.0, 4.0)
    assert conv.get_weight_range(conv.weight_store.get_temp_weights(float32, (0,))) == (0.0, 0.0)

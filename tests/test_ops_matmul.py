"""MatMul and BatchMatMul converter tests."""

import numpy as np
import pytest

from trtlower.errors import InvalidArgumentError, UnimplementedError
from trtlower.ir import MatrixOperation


def _kinds(harness):
    return [layer.kind for layer in harness.network.layers]


def _weights(harness, name, shape):
    return harness.add_weights(name, np.arange(np.prod(shape), dtype=np.float32).reshape(shape))


class TestMatMul:
    """Tensor times constant matrix."""

    def test_matrix_multiply(self, harness, node):
        harness.add_tensor("a", (2, 3))
        _weights(harness, "b", (3, 4))
        (out,) = harness.run_both(node("MatMul", "a", "b"))
        assert out.dims == (2, 4)
        assert _kinds(harness) == ["Constant", "MatrixMultiply"]
        layer = out.tensor.producer
        assert (layer.op0, layer.op1) == (MatrixOperation.NONE, MatrixOperation.NONE)

    def test_transposed_constant_is_reordered(self, harness, node):
        harness.add_tensor("a", (2, 3))
        b = _weights(harness, "b", (4, 3))
        (out,) = harness.run_both(node("MatMul", "a", "b", transpose_b=True))
        assert out.dims == (2, 4)
        constant = harness.network.layers[0]
        assert constant.dims == (3, 4)
        np.testing.assert_array_equal(constant.weights.values.reshape(3, 4), b.weights.as_array().T)
        assert out.tensor.producer.op1 is MatrixOperation.NONE

    def test_transposed_tensor(self, harness, node):
        harness.add_tensor("a", (3, 2))
        _weights(harness, "b", (3, 4))
        (out,) = harness.run_both(node("MatMul", "a", "b", transpose_a=True))
        assert out.dims == (2, 4)
        assert out.tensor.producer.op0 is MatrixOperation.TRANSPOSE

    def test_vector_input(self, harness, node):
        harness.add_tensor("a", (3,))
        _weights(harness, "b", (3, 4))
        (out,) = harness.run_both(node("MatMul", "a", "b"))
        assert out.dims == (4,)
        assert out.tensor.producer.op0 is MatrixOperation.VECTOR

    @pytest.mark.parametrize("transpose_b,shape", [(False, (3, 5)), (True, (5, 3))])
    def test_high_rank_input_uses_fully_connected(self, harness, node, transpose_b, shape):
        harness.add_tensor("a", (4, 2, 3))
        _weights(harness, "b", shape)
        (out,) = harness.run_both(node("MatMul", "a", "b", transpose_b=transpose_b))
        assert out.dims == (4, 2, 5)
        assert _kinds(harness) == ["FullyConnected"]
        assert out.tensor.producer.nb_outputs == 5

    def test_inner_dims_mismatch(self, harness, node):
        harness.add_tensor("a", (2, 3))
        _weights(harness, "b", (5, 4))
        assert harness.run_both(node("MatMul", "a", "b")) is InvalidArgumentError

    def test_b_must_be_constant(self, harness, node):
        harness.add_tensor("a", (2, 3))
        harness.add_tensor("b", (3, 4))
        assert harness.run_both(node("MatMul", "a", "b")) is UnimplementedError

    def test_transposed_constant_must_be_a_matrix(self, harness, node):
        harness.add_tensor("a", (2, 3))
        _weights(harness, "b", (3,))
        assert harness.run_both(node("MatMul", "a", "b", transpose_b=True)) is UnimplementedError


class TestBatchMatMul:
    """Batched products with optional constant operands."""

    def test_tensor_tensor(self, harness, node):
        harness.add_tensor("a", (2, 3, 4))
        harness.add_tensor("b", (2, 4, 5))
        (out,) = harness.run_both(node("BatchMatMul", "a", "b"))
        assert out.dims == (2, 3, 5)

    def test_adjoint(self, harness, node):
        harness.add_tensor("a", (2, 4, 3))
        harness.add_tensor("b", (2, 5, 4))
        (out,) = harness.run_both(node("BatchMatMul", "a", "b", adj_x=True, adj_y=True))
        assert out.dims == (2, 3, 5)
        layer = out.tensor.producer
        assert (layer.op0, layer.op1) == (MatrixOperation.TRANSPOSE, MatrixOperation.TRANSPOSE)

    def test_constant_rhs_drops_batch_and_uses_fully_connected(self, harness, node):
        harness.add_tensor("a", (2, 3, 4))
        _weights(harness, "b", (1, 4, 5))
        (out,) = harness.run_both(node("BatchMatMul", "a", "b"))
        assert out.dims == (2, 3, 5)
        assert _kinds(harness) == ["FullyConnected"]

    def test_constant_lhs(self, harness, node):
        _weights(harness, "a", (1, 3, 4))
        harness.add_tensor("b", (4, 5))
        (out,) = harness.run_both(node("BatchMatMul", "a", "b"))
        assert out.dims == (3, 5)
        assert _kinds(harness) == ["Constant", "MatrixMultiply"]

    def test_constant_with_batch(self, harness, node):
        harness.add_tensor("a", (2, 3, 4))
        _weights(harness, "b", (2, 4, 5))
        assert harness.run_both(node("BatchMatMul", "a", "b")) is InvalidArgumentError

    def test_both_constant(self, harness, node):
        _weights(harness, "a", (1, 3, 4))
        _weights(harness, "b", (1, 4, 5))
        assert harness.run_both(node("BatchMatMul", "a", "b")) is InvalidArgumentError

    def test_leading_dims_must_broadcast(self, harness, node):
        harness.add_tensor("a", (2, 3, 4))
        harness.add_tensor("b", (3, 4, 5))
        assert harness.run_both(node("BatchMatMul", "a", "b")) is InvalidArgumentError

    def test_leading_dims_broadcast(self, harness, node):
        harness.add_tensor("a", (2, 3, 4))
        harness.add_tensor("b", (1, 4, 5))
        (out,) = harness.run_both(node("BatchMatMul", "a", "b"))
        assert out.dims == (2, 3, 5)

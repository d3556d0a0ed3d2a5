import sys
from pathlib import Path

# Make `src/` importable in tests without requiring installation.
repo_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(repo_root / "src"))

import numpy as np  # noqa: E402
import pytest  # noqa: E402

from trtlower.config import PrecisionMode  # noqa: E402
from trtlower.convert.converter import Converter  # noqa: E402
from trtlower.convert.shapes import tf_dtype_to_trt  # noqa: E402
from trtlower.convert.validator import NodeValidator  # noqa: E402
from trtlower.convert.values import TensorOrWeights  # noqa: E402
from trtlower.errors import ConversionError  # noqa: E402
from trtlower.graph import DataType, GraphProperties, NodeDef, parse_input_name  # noqa: E402


class OpHarness:
    """Feeds one node through the validator and through a building converter.

    Inputs are registered once and then visible to both paths: tensors as
    network inputs (build) and graph properties (validate), weights as Const
    producers.
    """

    def __init__(
        self,
        precision_mode: PrecisionMode = PrecisionMode.FP32,
        use_calibration: bool = True,
        plugin_factory=None,
    ) -> None:
        self.converter = Converter(
            precision_mode=precision_mode, use_calibration=use_calibration, plugin_factory=plugin_factory
        )
        self.validator = NodeValidator(precision_mode, use_calibration, plugin_factory=plugin_factory)
        self.properties = GraphProperties()
        self.producers: dict[str, NodeDef] = {}

    @property
    def network(self):
        return self.converter.network

    def add_tensor(self, name: str, dims, dtype: DataType = DataType.DT_FLOAT, batch_size: int = 1) -> TensorOrWeights:
        self.converter.add_input_tensor(name, tf_dtype_to_trt(dtype), tuple(dims), batch_size)
        self.properties.add_output(name, dtype, (batch_size, *dims))
        self.producers[name] = NodeDef.make(name, "Placeholder", dtype=dtype)
        return self.converter.get_tensor_or_weights(name)

    def add_weights(self, name: str, values, dtype: DataType = DataType.DT_FLOAT) -> TensorOrWeights:
        array = np.asarray(values, dtype=dtype.numpy)
        node = NodeDef.make(name, "Const", value=array, dtype=dtype)
        self.producers[name] = node
        self.converter.convert_node(node)
        return self.converter.get_tensor_or_weights(name)

    def validate(self, node: NodeDef) -> None:
        refs = [parse_input_name(ref) for ref in node.data_inputs()]
        inputs = [(self.producers[ref.node], ref.index) for ref in refs]
        self.validator.validate_node(node, inputs, self.properties)

    def build(self, node: NodeDef) -> list[TensorOrWeights]:
        return self.converter.convert_node(node)

    def run_both(self, node: NodeDef):
        """Run both phases and check they agree.

        Returns the build outputs on success, or the (shared) error class.
        """
        validation_error = build_error = None
        try:
            self.validate(node)
        except ConversionError as exc:
            validation_error = exc
        try:
            outputs = self.build(node)
        except ConversionError as exc:
            build_error = exc
        assert type(validation_error) is type(build_error), (
            f"validate raised {validation_error!r}, build raised {build_error!r}"
        )
        if build_error is not None:
            return type(build_error)
        return outputs


@pytest.fixture
def harness() -> OpHarness:
    return OpHarness()


@pytest.fixture
def make_harness():
    return OpHarness


@pytest.fixture
def node():
    """`node(op, *inputs, name=..., **attrs)` with `T` defaulting to float."""

    def make(op: str, *inputs: str, name: str = "op", **attrs) -> NodeDef:
        attrs.setdefault("T", DataType.DT_FLOAT)
        return NodeDef.make(name, op, inputs, **attrs)

    return make

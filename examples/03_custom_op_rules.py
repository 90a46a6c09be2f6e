import numpy as np

from tensorfacts import InferenceFact, InferenceModel, InletId, OutletId
from tensorfacts.ops import MatMul, Op


class Pad(Op):
    """Constant padding of every axis by ``before`` and ``after`` elements."""

    name = "Pad"

    def __init__(self, before: int, after: int):
        self.before = before
        self.after = after

    def rules(self, s, inputs, outputs):
        s.equals(inputs.len, 1).equals(outputs.len, 1)
        s.equals(inputs[0].datum_type, outputs[0].datum_type)
        s.equals(inputs[0].rank, outputs[0].rank)

        def per_axis(s, rank):
            for axis in range(rank):
                s.equals(outputs[0].shape[axis], inputs[0].shape[axis] + self.before + self.after)

        s.given(inputs[0].rank, per_axis)


model = InferenceModel()
image = model.add_source("image", InferenceFact(datum_type="float32"))
pad = model.add_node("pad", Pad(1, 1), [InferenceFact()])
model.add_edge(image, InletId(pad, 0))

weights = model.add_const("weights", np.ones((6, 2), dtype=np.float32))
proj = model.add_node("proj", MatMul(), [InferenceFact.dt_shape("float32", [5, None])])
model.add_edge(OutletId(pad, 0), InletId(proj, 0))
model.add_edge(weights, InletId(proj, 1))
model.set_output_outlets([OutletId(proj, 0)])

report = model.analyse()
for node in model.nodes:
    print(f"{node.name}: {node.outputs[0]}")

# The padded shape [5, 6] is only known downstream; it flows back to the source.
assert model.outlet_fact(image) == InferenceFact.dt_shape("float32", [3, 4])
assert report.ok

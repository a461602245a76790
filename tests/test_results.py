import pytest

from consensus_nmf.results import consensus_file, dt_label


@pytest.mark.parametrize(
    "dt, label", [(0.5, "0_5"), (1, "1_0"), (1.0, "1_0"), ("0.25", "0_25")]
)
def test_dt_label_independent_of_type(dt, label):
    assert dt_label(dt) == label


def test_consensus_file_pattern():
    path = consensus_file("out", "demo", "usages", 3, 1, suffix="consensus.txt")
    assert path.endswith("demo/demo.usages.k_3.dt_1_0.consensus.txt")
    assert path == consensus_file("out", "demo", "usages", 3.0, 1.0, suffix="consensus.txt")

import pytest

from dxbench.errors import ConfigError, SchemaError
from dxbench.workload.holder import FieldRange, Holder, build_holder, other_instance
from dxbench.workload.rng import make_rng
from dxbench.workload.specs import parse_specs
from tests.conftest import FakeIndexClient

TWO_INDEX_SPECS = b"""
[indexes.a]
[[indexes.a.fields]]
name = "x"
max = 9
[[indexes.a.fields]]
name = "t"
max = 9
type = "time"

[indexes.b]
[[indexes.b.fields]]
name = "y"
min = 100
max = 199
"""


def test_other_instance_swaps_tags():
    assert other_instance("candidate") == "primary"
    assert other_instance("primary") == "candidate"
    with pytest.raises(ConfigError):
        other_instance("staging")


def test_build_holder_creates_schema_and_catalogs_ranges():
    client = FakeIndexClient()
    holder = build_holder("candidate", client, parse_specs(TWO_INDEX_SPECS))

    assert set(client.indexes) == {"a", "b"}
    assert client.indexes["a"]["t"] == {"type": "time"}
    assert set(holder.pairs()) == {("a", "x"), ("a", "t"), ("b", "y")}
    cif = holder.new_cif("b", "y")
    assert (cif.index, cif.field, cif.min, cif.max) == ("b", "y", 100, 199)


def test_build_holder_is_idempotent_against_existing_schema():
    client = FakeIndexClient()
    specs = parse_specs(TWO_INDEX_SPECS)
    build_holder("primary", client, specs)
    holder = build_holder("primary", client, specs)

    assert len(holder) == 3


def test_build_holder_propagates_schema_errors():
    with pytest.raises(SchemaError):
        build_holder("candidate", FakeIndexClient(schema_error=True), parse_specs(TWO_INDEX_SPECS))


def test_random_if_is_reproducible_with_seeded_rng():
    catalog = {"a": [FieldRange("x", 0, 9), FieldRange("z", 0, 9)], "b": [FieldRange("y", 0, 9)]}
    first = Holder("candidate", catalog, rng=make_rng(5))
    second = Holder("candidate", catalog, rng=make_rng(5))

    picks = [first.random_if() for _ in range(50)]
    assert picks == [second.random_if() for _ in range(50)]
    assert set(picks) == {("a", "x"), ("a", "z"), ("b", "y")}


def test_empty_holder_fails_cleanly():
    holder = Holder("candidate", {})

    with pytest.raises(SchemaError):
        holder.random_if()


def test_new_cif_rejects_unknown_pairs():
    holder = Holder("candidate", {"a": [FieldRange("x", 0, 9)]})

    with pytest.raises(SchemaError):
        holder.new_cif("a", "missing")
    with pytest.raises(SchemaError):
        holder.new_cif("missing", "x")


def test_holder_catalog_is_read_only():
    holder = Holder("candidate", {"a": [FieldRange("x", 0, 9)]})

    with pytest.raises(TypeError):
        holder.catalog["b"] = {}

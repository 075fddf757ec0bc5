import pytest

from yaki.errors import UnknownComponent
from yaki.modules.versions import COMPATIBILITY_MATRIX, VersionResolver


@pytest.mark.parametrize("component", sorted(COMPATIBILITY_MATRIX))
def test_resolve_without_override_returns_pinned_version(component):
    resolver = VersionResolver()
    assert resolver.resolve(component) == COMPATIBILITY_MATRIX[component]


@pytest.mark.parametrize("component", sorted(COMPATIBILITY_MATRIX))
def test_resolve_with_override_returns_it_verbatim(component):
    resolver = VersionResolver()
    assert resolver.resolve(component, override="v9.9.9-custom+build") == "v9.9.9-custom+build"


def test_containerd_scenario():
    resolver = VersionResolver(matrix={"containerd": "v1.7.16"})
    assert resolver.resolve("containerd", override=None) == "v1.7.16"


def test_unknown_component_without_override():
    resolver = VersionResolver(matrix={"containerd": "v1.7.16"})
    with pytest.raises(UnknownComponent) as exc:
        resolver.resolve("etcd")
    assert exc.value.component == "etcd"


def test_unknown_component_with_override_is_allowed():
    resolver = VersionResolver(matrix={})
    assert resolver.resolve("etcd", override="v3.5.0") == "v3.5.0"


def test_configured_overrides_take_precedence_over_matrix():
    resolver = VersionResolver(overrides={"kubernetes": "v1.29.4"})
    assert resolver.resolve("kubernetes") == "v1.29.4"
    assert resolver.resolve("kubernetes", override="v1.31.0") == "v1.31.0"
    assert resolver.resolve("runc") == COMPATIBILITY_MATRIX["runc"]


def test_empty_override_falls_back_to_matrix():
    resolver = VersionResolver()
    assert resolver.resolve("cni", override="") == COMPATIBILITY_MATRIX["cni"]


def test_matrix_is_read_only():
    resolver = VersionResolver()
    with pytest.raises(TypeError):
        resolver.matrix["containerd"] = "v0.0.1"
    with pytest.raises(TypeError):
        COMPATIBILITY_MATRIX["containerd"] = "v0.0.1"


def test_resolve_all_includes_extra_overrides():
    resolver = VersionResolver(matrix={"runc": "v1.1.11"}, overrides={"etcd": "v3.5.0"})
    assert resolver.resolve_all() == {"runc": "v1.1.11", "etcd": "v3.5.0"}

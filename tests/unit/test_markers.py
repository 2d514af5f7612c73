"""Unit tests for markgen.core.markers."""
from __future__ import annotations

import logging
from typing import Annotated

import pytest

from markgen.core.identity import ALL_KINDS, ElementKind
from markgen.core.markers import (
    Marker,
    TestOnly,
    annotated_markers,
    is_marker_type,
    markers_of,
    resolve_targets,
)


class Service(Marker):
    targets = (ElementKind.TYPE,)


class Inject(Marker):
    targets = ("field", "constructor")


class Anywhere(Marker):
    pass


class Broken(Marker):
    targets = ("type", "package")


class NotIterable(Marker):
    targets = 7  # type: ignore[assignment]


# ===========================================================================
# Marker instances
# ===========================================================================


class TestMarkerInstances:
    def test_attributes_are_exposed(self) -> None:
        marker = Service(name="mailer", lazy=True)
        assert marker.name == "mailer"
        assert marker.lazy is True
        assert marker.attributes == {"name": "mailer", "lazy": True}

    def test_missing_attribute_raises(self) -> None:
        with pytest.raises(AttributeError):
            Service().missing  # noqa: B018

    def test_equality_by_type_and_attributes(self) -> None:
        assert Service(name="a") == Service(name="a")
        assert Service(name="a") != Service(name="b")
        assert Service() != Anywhere()

    def test_hashable(self) -> None:
        assert len({Service(name="a"), Service(name="a")}) == 1

    def test_repr(self) -> None:
        assert repr(Service(name="x")) == "@Service(name='x')"

    def test_marker_name_is_qualified(self) -> None:
        assert Service.marker_name().endswith(".Service")


# ===========================================================================
# Attaching markers
# ===========================================================================


class TestAttaching:
    def test_decorator_returns_target_unchanged(self) -> None:
        class Mailer:
            pass

        assert Service()(Mailer) is Mailer

    def test_markers_accumulate_in_order(self) -> None:
        @Service(name="first")
        @Anywhere()
        class Mailer:
            pass

        assert markers_of(Mailer) == (Anywhere(), Service(name="first"))

    def test_function_markers(self) -> None:
        @Anywhere(tag=1)
        def build() -> None:
            pass

        assert markers_of(build) == (Anywhere(tag=1),)

    def test_subclass_does_not_inherit_markers(self) -> None:
        @Service()
        class Base:
            pass

        class Child(Base):
            pass

        assert markers_of(Base) == (Service(),)
        assert markers_of(Child) == ()

    def test_cannot_attach_to_builtin(self) -> None:
        with pytest.raises(TypeError):
            Service()(42)

    def test_annotated_markers(self) -> None:
        assert annotated_markers(Annotated[int, Inject(), "doc"]) == (Inject(),)
        assert annotated_markers(int) == ()

    def test_is_marker_type(self) -> None:
        assert is_marker_type(Service)
        assert not is_marker_type(Service())
        assert not is_marker_type(int)


# ===========================================================================
# resolve_targets
# ===========================================================================


class TestResolveTargets:
    def test_declared_targets(self) -> None:
        assert resolve_targets(Service) == ((ElementKind.TYPE,), [])

    def test_string_targets_are_classified(self) -> None:
        kinds, unknown = resolve_targets(Inject)
        assert kinds == (ElementKind.FIELD, ElementKind.CONSTRUCTOR)
        assert unknown == []

    def test_no_targets_means_all_kinds(self) -> None:
        assert resolve_targets(Anywhere) == (ALL_KINDS, [])

    def test_unclassifiable_targets_fall_back_to_all_kinds(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="markgen.core.markers"):
            kinds, unknown = resolve_targets(Broken)
        assert kinds == ALL_KINDS
        assert unknown == ["'package'"]
        assert "Broken" in caplog.text

    def test_non_iterable_targets_fall_back(self) -> None:
        kinds, unknown = resolve_targets(NotIterable)
        assert kinds == ALL_KINDS
        assert unknown

    def test_test_only_targets_types(self) -> None:
        assert resolve_targets(TestOnly) == ((ElementKind.TYPE,), [])

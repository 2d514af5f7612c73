"""Core engine: units, merge table, dependency graph, entries and driver.

Submodules in core/ should not import from cli/.
"""
from __future__ import annotations

from markgen.core.context import InjectionContext, Injector, ProcessingContext, TypeRegistry
from markgen.core.declarations import Declaration, DeclarationView
from markgen.core.delegate import ProcessingDelegate
from markgen.core.discovery import DelegateBuilder
from markgen.core.entry import EntryState, ProcessingEntry
from markgen.core.errors import (
    CyclicDependencyError,
    DependencyCheckError,
    HandlerAlreadyRegisteredError,
    HandlerNotFoundError,
    InjectionFailure,
    MalformedDeclarationError,
    MarkgenError,
    ProcessingIncompleteError,
    RuleCycleError,
    StructuralError,
    UnknownTargetError,
)
from markgen.core.graph import DependencyGraph, ScheduleResult
from markgen.core.handler import DependencyControl, FunctionHandler, MarkerHandler
from markgen.core.identity import ALL_KINDS, ElementKind, UnitKey
from markgen.core.markers import Marker, TestOnly
from markgen.core.merge import MergePolicy, UnitTable
from markgen.core.registry import HandlerRegistry, HandlerSpec
from markgen.core.rules import HandlerOrdering, RelativeOrder, RuleDef, after, before
from markgen.core.unit import Unit

__all__ = [
    "ALL_KINDS",
    "CyclicDependencyError",
    "Declaration",
    "DeclarationView",
    "DelegateBuilder",
    "DependencyCheckError",
    "DependencyControl",
    "DependencyGraph",
    "ElementKind",
    "EntryState",
    "FunctionHandler",
    "HandlerAlreadyRegisteredError",
    "HandlerNotFoundError",
    "HandlerOrdering",
    "HandlerRegistry",
    "HandlerSpec",
    "InjectionContext",
    "InjectionFailure",
    "Injector",
    "MalformedDeclarationError",
    "Marker",
    "MarkerHandler",
    "MarkgenError",
    "MergePolicy",
    "ProcessingContext",
    "ProcessingDelegate",
    "ProcessingEntry",
    "ProcessingIncompleteError",
    "RelativeOrder",
    "RuleCycleError",
    "RuleDef",
    "ScheduleResult",
    "StructuralError",
    "TestOnly",
    "TypeRegistry",
    "Unit",
    "UnitKey",
    "UnitTable",
    "UnknownTargetError",
    "after",
    "before",
]

# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
"""Label selectors and their canonical text form."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterable, Mapping


class Operator(str, enum.Enum):
    """Set based label selector operators."""

    IN = "In"
    NOT_IN = "NotIn"
    EXISTS = "Exists"
    DOES_NOT_EXIST = "DoesNotExist"


@dataclass(frozen=True)
class LabelSelectorRequirement:
    """A single ``matchExpressions`` entry.

    Args:
        key: The label key the requirement applies to.
        operator: One of :class:`Operator`, or its string value.
        values: The value set. Must be non-empty for ``In`` and ``NotIn`` and
            empty for ``Exists`` and ``DoesNotExist``.

    Raises:
        ValueError: If the operator is unknown or the values don't fit it.
    """

    key: str
    operator: Operator
    values: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "operator", Operator(self.operator))
        object.__setattr__(self, "values", tuple(self.values))
        if not self.key:
            raise ValueError("label selector requirement must have a key")
        if self.operator in (Operator.IN, Operator.NOT_IN) and not self.values:
            raise ValueError(
                f"values must be non-empty for operator {self.operator.value}"
            )
        if (
            self.operator in (Operator.EXISTS, Operator.DOES_NOT_EXIST)
            and self.values
        ):
            raise ValueError(f"values must be empty for operator {self.operator.value}")

    def __str__(self) -> str:
        if self.operator == Operator.EXISTS:
            return self.key
        if self.operator == Operator.DOES_NOT_EXIST:
            return f"!{self.key}"
        op = "in" if self.operator == Operator.IN else "notin"
        return f"{self.key} {op} ({','.join(sorted(self.values))})"

    def matches(self, labels: Mapping[str, str]) -> bool:
        if self.operator == Operator.IN:
            return self.key in labels and labels[self.key] in self.values
        if self.operator == Operator.NOT_IN:
            return self.key not in labels or labels[self.key] not in self.values
        if self.operator == Operator.EXISTS:
            return self.key in labels
        return self.key not in labels


@dataclass(frozen=True)
class LabelSelector:
    """A Kubernetes label selector made of exact matches and expressions.

    ``str()`` renders the selector the same way the Kubernetes API machinery does,
    which is also the form accepted by the ``labelSelector`` query parameter.

    Example:
        >>> selector = LabelSelector(
        ...     match_labels={"app": "web"},
        ...     match_expressions=[("tier", "In", ["frontend", "edge"])],
        ... )
        >>> str(selector)
        'app=web,tier in (edge,frontend)'
    """

    match_labels: Mapping[str, str] = field(default_factory=dict)
    match_expressions: tuple[LabelSelectorRequirement, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "match_labels", dict(self.match_labels))
        object.__setattr__(
            self,
            "match_expressions",
            tuple(_requirement(e) for e in self.match_expressions),
        )

    @property
    def empty(self) -> bool:
        return not self.match_labels and not self.match_expressions

    def __str__(self) -> str:
        terms = [(k, f"{k}={v}") for k, v in self.match_labels.items()]
        terms += [(e.key, str(e)) for e in self.match_expressions]
        # Python's sort is stable so exact matches stay ahead of expressions on the same key
        terms.sort(key=lambda t: t[0])
        return ",".join(t for _, t in terms) or "<none>"

    def matches(self, labels: Mapping[str, str] | None) -> bool:
        """Check whether a set of labels satisfies every term of the selector."""
        labels = labels or {}
        if any(labels.get(k) != v for k, v in self.match_labels.items()):
            return False
        return all(e.matches(labels) for e in self.match_expressions)

    @classmethod
    def from_dict(cls, data: Mapping) -> LabelSelector:
        """Create a selector from a Kubernetes style dict.

        Both the full ``{"matchLabels": ..., "matchExpressions": ...}`` form and a plain
        mapping of labels to values are accepted.
        """
        if "matchLabels" not in data and "matchExpressions" not in data:
            return cls(match_labels=data)
        return cls(
            match_labels=data.get("matchLabels") or {},
            match_expressions=tuple(data.get("matchExpressions") or ()),
        )

    @classmethod
    def coerce(cls, value: LabelSelector | Mapping | None) -> LabelSelector:
        if value is None:
            return cls()
        if isinstance(value, LabelSelector):
            return value
        if isinstance(value, Mapping):
            return cls.from_dict(value)
        raise TypeError(
            f"Expected a LabelSelector or dict, got {value.__class__.__name__}"
        )


def _requirement(
    value: LabelSelectorRequirement | Mapping | Iterable,
) -> LabelSelectorRequirement:
    if isinstance(value, LabelSelectorRequirement):
        return value
    if isinstance(value, Mapping):
        return LabelSelectorRequirement(
            key=value["key"],
            operator=value["operator"],
            values=tuple(value.get("values") or ()),
        )
    key, operator, *values = value
    return LabelSelectorRequirement(
        key=key, operator=operator, values=tuple(values[0]) if values else ()
    )

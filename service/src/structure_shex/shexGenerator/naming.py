from __future__ import annotations

from dataclasses import dataclass

from ..prefixes import PREFIXES

LIST_PREFIX = "OneOrMore_"


@dataclass(frozen=True, slots=True)
class BindingMap:
    fhir_stem: str
    shex_stem: str


BINDING_MAPS = [
    BindingMap(fhir_stem=PREFIXES["fhirvs"], shex_stem=""),
    BindingMap(fhir_stem="http://terminology.hl7.org/ValueSet/", shex_stem="hl7-"),
]


def list_name(type_name: str) -> str:
    return LIST_PREFIX + type_name


def value_set_name(value_set_url: str) -> tuple[str, str | None] | None:
    """Local shape name and version for a bound value set, None for unknown stems.

    ``http://hl7.org/fhir/ValueSet/medicationrequest-status|4.6.0``
    -> ``("medicationrequest-status", "4.6.0")``
    """
    for binding_map in BINDING_MAPS:
        if value_set_url.startswith(binding_map.fhir_stem):
            local_name = binding_map.shex_stem + value_set_url[len(binding_map.fhir_stem):]
            name, _, version = local_name.partition("|")
            return name, version or None
    return None


def make_card(min_: int | None, max_: str | None) -> dict[str, int]:
    """Cardinality keywords for a constraint; empty for the implicit 1..1."""
    lower = 1 if min_ is None else int(min_)
    if max_ is None:
        upper = 1
    elif max_ == "*":
        upper = -1
    else:
        upper = int(max_)
    if lower == 1 and upper == 1:
        return {}
    return {"min": lower, "max": upper}

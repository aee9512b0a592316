"""Namespace prefixes and the two functions that convert between IRIs and CURIE parts."""

PREFIXES: dict[str, str] = {
    "fhir": "http://hl7.org/fhir/",
    "fhirs": "http://hl7.org/fhir/shape/",
    "fhirvs": "http://hl7.org/fhir/ValueSet/",
    "rdf": "http://www.w3.org/1999/02/22-rdf-syntax-ns#",
    "rdfs": "http://www.w3.org/2000/01/rdf-schema#",
    "xsd": "http://www.w3.org/2001/XMLSchema#",
    "owl": "http://www.w3.org/2002/07/owl#",
}

STRUCTURE_DEFN_ROOT = "http://hl7.org/fhir/StructureDefinition/"
FHIRPATH_ROOT = "http://hl7.org/fhirpath/System."
S2J = "http://shex2json.example/map#"


def expand(prefix: str, local_name: str) -> str:
    """Build the full IRI for ``prefix:local_name``.

    Raises:
        KeyError: if the prefix is not registered
    """
    return PREFIXES[prefix] + local_name


def shorten(uri: str) -> tuple[str | None, str]:
    """Split an IRI into ``(prefix, local_name)`` using the longest matching namespace.

    IRIs (or plain labels) outside every registered namespace come back as
    ``(None, uri)``.
    """
    best: tuple[str | None, str] = (None, uri)
    for prefix, namespace in PREFIXES.items():
        if uri.startswith(namespace) and len(uri) - len(namespace) < len(best[1]):
            best = (prefix, uri[len(namespace):])
    return best


def curie(uri: str) -> str:
    prefix, local_name = shorten(uri)
    return uri if prefix is None else f"{prefix}:{local_name}"


def structure_name(url: str) -> str | None:
    """``http://hl7.org/fhir/StructureDefinition/Patient`` -> ``Patient``"""
    if not url.startswith(STRUCTURE_DEFN_ROOT):
        return None
    return url[len(STRUCTURE_DEFN_ROOT):]

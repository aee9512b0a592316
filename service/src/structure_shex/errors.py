class StructureError(Exception):
    """Base class for problems found in FHIR definitions during generation."""


class StructureDefinitionError(StructureError):
    def __init__(self, msg: str, structure_id: str | None = None) -> None:
        super().__init__(f"Error in {structure_id}: {msg}" if structure_id else msg)
        self.structure_id = structure_id


class FieldDefinitionError(StructureError):
    def __init__(self, msg: str, structure, field) -> None:
        super().__init__(
            f"Error in {structure.id} differential.element[{field.ordinal}] {field.id}: {msg}"
        )
        self.structure_id = structure.id
        self.field_id = field.id
        self.ordinal = field.ordinal


class DefinitionLookupError(StructureError):
    pass


class StructureCycleError(StructureError):
    def __init__(self, chain: list[str]) -> None:
        super().__init__(f"Cyclic structure reference: {' -> '.join(chain)}")
        self.chain = chain


class InvalidAxes(ValueError):
    pass


class DefinitionNotFound(Exception):
    pass


class InvalidFileFormat(Exception):
    pass

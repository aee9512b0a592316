import json

import pytest
from pydantic import ValidationError

from structure_shex.data.config import Axes, GeneratorConfig
from structure_shex.errors import DefinitionLookupError, InvalidAxes, InvalidFileFormat

from conftest import FILES_DIR


def test_default_axes():
    axes = Axes()
    assert (axes.r, axes.d, axes.v, axes.c, axes.h) == (True, True, True, False, False)
    assert str(axes) == "RDVch"


def test_parse_axes():
    axes = Axes.parse("rdVCh")
    assert not axes.r
    assert not axes.d
    assert axes.v
    assert axes.c
    assert not axes.h
    assert str(axes) == "rdVCh"


@pytest.mark.parametrize("axes", ["RDV", "rdvchx", "hcvdr", ""])
def test_parse_invalid_axes(axes):
    with pytest.raises(InvalidAxes):
        Axes.parse(axes)


def test_config_accepts_axes_string():
    config = GeneratorConfig(axes="RDVCh")
    assert config.axes.c


def test_config_rejects_invalid_axes_string():
    with pytest.raises(ValidationError):
        GeneratorConfig(axes="xyz")


def test_config_from_yaml():
    config = GeneratorConfig.from_file(FILES_DIR / "config.yaml")

    assert str(config.axes) == "rdvCh"
    assert config.fhir_release == "R4B"
    assert config.add_types_to == ["MedicationRequest"]
    assert config.add_value_set_version_annotation
    assert config.log_missing


def test_config_from_json(tmp_path):
    file = tmp_path / "config.json"
    file.write_text(json.dumps({"axes": "RDvch", "fhir_release": "R5"}))

    config = GeneratorConfig.from_file(file)

    assert not config.axes.v
    assert config.fhir_release == "R5"


def test_config_from_invalid_file(tmp_path):
    file = tmp_path / "config.json"
    file.write_text("{not json")

    with pytest.raises(InvalidFileFormat):
        GeneratorConfig.from_file(file)


def test_report_raises_without_sink():
    with pytest.raises(DefinitionLookupError):
        GeneratorConfig().report(DefinitionLookupError("boom"))


def test_report_collects_with_sink():
    errors = []
    config = GeneratorConfig(error=errors.append)

    config.report(DefinitionLookupError("boom"))

    assert len(errors) == 1
    assert str(errors[0]) == "boom"


def test_record_missing_collects():
    config = GeneratorConfig(missing={})

    config.record_missing("codesystems", "http://example.org/cs")
    config.record_missing("codesystems", "http://example.org/cs")

    assert config.missing == {"codesystems": {"http://example.org/cs"}}


def test_record_missing_logs(caplog):
    config = GeneratorConfig(log_missing=True)

    config.record_missing("codesystems", "http://example.org/cs")

    assert "can't find definition for codesystems http://example.org/cs" in caplog.text


def test_record_missing_raises_by_default():
    with pytest.raises(DefinitionLookupError):
        GeneratorConfig().record_missing("codesystems", "http://example.org/cs")


def test_record_missing_fills_the_callers_dict():
    missing: dict[str, set[str]] = {}
    config = GeneratorConfig(missing=missing)

    config.record_missing("codesystems", "http://example.org/cs")

    assert config.missing is missing
    assert missing == {"codesystems": {"http://example.org/cs"}}

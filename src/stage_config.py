"""Setup-pipeline parameters: loading, schema validation and CLI overrides."""

import json
import os
import tomllib
from typing import Any, Mapping

import yaml
from jsonschema import Draft7Validator
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_PARAMS_PATH = "mdchain_params.yaml"
PARAMS_USED_FILE = "params_used.json"

STAGE_PARAMS_SCHEMA = {
    "type": "object",
    "properties": {
        "force_field": {"type": "string", "minLength": 1},
        "water_model": {"type": "string", "minLength": 1},
        "box_type": {
            "type": "string",
            "enum": ["cubic", "dodecahedron", "octahedron", "triclinic"],
        },
        "box_distance": {"type": "number", "exclusiveMinimum": 0},
        "salt_concentration": {"type": "number", "minimum": 0},
        "positive_ion": {"type": "string", "minLength": 1},
        "negative_ion": {"type": "string", "minLength": 1},
        "temperature": {"type": "number", "exclusiveMinimum": 0},
        "dt": {"type": "number", "exclusiveMinimum": 0},
        "em_steps": {"type": "integer", "minimum": 1},
        "nvt_steps": {"type": "integer", "minimum": 1},
        "npt_steps": {"type": "integer", "minimum": 1},
        "md_steps": {"type": "integer", "minimum": 1},
    },
    "additionalProperties": False,
}

STAGE_PARAMS_EXAMPLES = {
    "force_field": "\"force_field\": \"charmm36-jul2022\"",
    "water_model": "\"water_model\": \"tip3p\"",
    "box_type": "\"box_type\": \"cubic\"",
    "box_distance": "\"box_distance\": 2.0",
    "salt_concentration": "\"salt_concentration\": 0.15",
    "positive_ion": "\"positive_ion\": \"NA\"",
    "negative_ion": "\"negative_ion\": \"CL\"",
    "temperature": "\"temperature\": 300",
    "dt": "\"dt\": 0.002",
    "em_steps": "\"em_steps\": 50000",
    "nvt_steps": "\"nvt_steps\": 50000",
    "npt_steps": "\"npt_steps\": 50000",
    "md_steps": "\"md_steps\": 500000000",
}


class ParamsModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


class PipelineParams(ParamsModel):
    force_field: str = "charmm36-jul2022"
    water_model: str = "tip3p"
    box_type: str = "cubic"
    box_distance: float = Field(default=2.0, gt=0)
    salt_concentration: float = Field(default=0.15, ge=0)
    positive_ion: str = "NA"
    negative_ion: str = "CL"
    temperature: float = Field(default=300.0, gt=0)
    dt: float = Field(default=0.002, gt=0)
    em_steps: int = Field(default=50000, ge=1)
    nvt_steps: int = Field(default=50000, ge=1)
    npt_steps: int = Field(default=50000, ge=1)
    md_steps: int = Field(default=500_000_000, ge=1)


def _format_parse_error_prefix(path, file_label):
    return f"Failed to parse {file_label} '{path}'"


def _parse_params_contents(path, raw_text, file_label="params"):
    extension = os.path.splitext(str(path))[1].lower()
    if extension in (".yaml", ".yml"):
        try:
            return yaml.safe_load(raw_text)
        except yaml.YAMLError as error:
            raise ValueError(f"{_format_parse_error_prefix(path, file_label)}: {error}") from error
    if extension == ".toml":
        try:
            return tomllib.loads(raw_text)
        except tomllib.TOMLDecodeError as error:
            raise ValueError(f"{_format_parse_error_prefix(path, file_label)}: {error}") from error
    try:
        return json.loads(raw_text)
    except json.JSONDecodeError as error:
        location = f"line {error.lineno} column {error.colno}"
        raise ValueError(
            f"{_format_parse_error_prefix(path, file_label)} ({location}): {error.msg}"
        ) from error


def load_params_file(params_path):
    """Read a JSON/YAML/TOML parameter file; an empty path yields ``{}``."""
    if not params_path:
        return {}
    if not os.path.isfile(params_path):
        raise FileNotFoundError(
            f"Parameter file not found: '{params_path}'. "
            "Use --params with a valid file (JSON/YAML/TOML)."
        )
    with open(params_path, "r", encoding="utf-8") as handle:
        data = _parse_params_contents(params_path, handle.read())
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Parameter file must contain an object/mapping.")
    return data


def _format_schema_error(error):
    path = ".".join(str(part) for part in error.absolute_path)
    key_path = path or "(root)"
    if error.validator == "additionalProperties":
        cause = error.message
        example = ", ".join(sorted(STAGE_PARAMS_EXAMPLES))
        return f"Parameter schema error at '{key_path}': {cause} Known keys: {example}"
    if error.validator == "enum":
        allowed_values = ", ".join(repr(value) for value in error.validator_value)
        cause = f"Invalid value. Allowed values: {allowed_values}."
    else:
        cause = error.message
    example = STAGE_PARAMS_EXAMPLES.get(path, "")
    return f"Parameter schema error at '{key_path}': {cause} Example: {example}".rstrip()


def validate_params(params):
    if not isinstance(params, dict):
        raise ValueError("Parameters must be an object/mapping.")
    validator = Draft7Validator(STAGE_PARAMS_SCHEMA)
    errors = sorted(validator.iter_errors(params), key=lambda error: list(error.absolute_path))
    if errors:
        raise ValueError(_format_schema_error(errors[0]))


def build_params(params_path=None, overrides: Mapping[str, Any] | None = None) -> PipelineParams:
    """Merge file values with non-empty CLI overrides and validate the result."""
    merged = dict(load_params_file(params_path))
    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value
    validate_params(merged)
    return PipelineParams.model_validate(merged)


def write_params_used(params: PipelineParams, directory: str) -> str:
    path = os.path.join(directory, PARAMS_USED_FILE)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(params.to_dict(), handle, indent=2, ensure_ascii=False)
    return path

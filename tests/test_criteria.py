import pytest
from pydantic import TypeAdapter, ValidationError

from zoho_connector.schemas import Criteria, FieldFilter, RawCriteria, StructuredCriteria
from zoho_connector.services.criteria import format_criteria


def test_none_and_empty_raw_criteria_format_to_empty_string() -> None:
    assert format_criteria(None) == ""
    assert format_criteria(RawCriteria()) == ""
    assert format_criteria("  ") == ""


def test_raw_criteria_pass_through() -> None:
    assert format_criteria(RawCriteria(expression='Status == "Open"')) == 'Status == "Open"'


def test_structured_criteria_are_joined_and_escaped() -> None:
    criteria = StructuredCriteria(
        filters=[
            FieldFilter(field="Name", value='Say "hi"'),
            FieldFilter(field="Active", value=True),
            FieldFilter(field="Amount", comparator=">=", value=12.5),
            FieldFilter(field="Deleted", comparator="!=", value=None),
        ]
    )

    assert format_criteria(criteria) == (
        'Name == "Say \\"hi\\"" && Active == true && Amount >= 12.5 && Deleted != null'
    )


def test_criteria_union_is_discriminated_by_kind() -> None:
    adapter = TypeAdapter(Criteria)

    parsed = adapter.validate_python(
        {"kind": "structured", "filters": [{"field": "Region", "value": "EU"}]}
    )

    assert isinstance(parsed, StructuredCriteria)
    assert format_criteria(parsed) == 'Region == "EU"'

    with pytest.raises(ValidationError):
        adapter.validate_python({"kind": "unknown"})

"""Tests for the payload normalizer and its strategies."""

import io
import json
from datetime import date, datetime, timezone

import pytest
from openpyxl import Workbook

from humdata.errors import NormalizationError
from humdata.fetching.schemas import RawPayload
from humdata.normalization.normalizer import NormalizationResult, PayloadNormalizer
from humdata.normalization.schemas import (
    FieldSpec,
    FieldType,
    NormalizationSchema,
    NormalizedRecord,
)
from humdata.normalization.strategies import resolve_path
from humdata.sources.schemas import PayloadKind

PRICES = NormalizationSchema(
    name="food_prices",
    kind=PayloadKind.TABULAR_TEXT,
    fields=(
        FieldSpec("date", FieldType.DATE, required=True),
        FieldSpec("market", FieldType.STRING, required=True),
        FieldSpec("price", FieldType.FLOAT, required=True),
        FieldSpec("unit", FieldType.STRING),
    ),
)

SUMMARY = NormalizationSchema(
    name="gaza_summary",
    kind=PayloadKind.TREE,
    records_path="gaza",
    fields=(
        FieldSpec("killed_total", FieldType.INTEGER, required=True, source="killed.total"),
        FieldSpec("killed_children", FieldType.INTEGER, source="killed.children"),
        FieldSpec("last_update", FieldType.DATE, required=True),
    ),
)

INDICATOR = NormalizationSchema(
    name="gdp",
    kind=PayloadKind.TREE,
    records_path="1",
    fields=(
        FieldSpec("year", FieldType.INTEGER, required=True, source="date"),
        FieldSpec("value", FieldType.FLOAT, required=True),
        FieldSpec("country", FieldType.STRING, source="country.value"),
    ),
)

UNEMPLOYMENT = NormalizationSchema(
    name="unemployment",
    kind=PayloadKind.SPREADSHEET,
    header_row=2,
    sheets=("Unemployment",),
    fields=(
        FieldSpec("region", FieldType.STRING, required=True, source="Region"),
        FieldSpec("year", FieldType.INTEGER, required=True, source="Year"),
        FieldSpec("rate", FieldType.FLOAT, required=True, source="Rate"),
    ),
)


def _csv(rows: list[str], header: str = "date,market,price,unit") -> bytes:
    return ("\n".join([header, *rows]) + "\n").encode("utf-8")


def _price_rows(n: int) -> list[str]:
    return [f"2024-01-{i + 1:02d},Gaza City,{10 + i}.5,KG" for i in range(n)]


def _workbook(sheets: dict[str, list[list]]) -> bytes:
    workbook = Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets.items():
        sheet = workbook.create_sheet(title)
        for row in rows:
            sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def normalizer(metrics):
    return PayloadNormalizer(
        {
            "wfp": PRICES,
            "t4p": SUMMARY,
            "wb": INDICATOR,
            "pcbs": UNEMPLOYMENT,
        },
        metrics=metrics,
    )


class TestTabularText:
    """Tests for delimited text payloads."""

    def test_all_rows_valid(self, normalizer):
        """N valid rows give N typed rows and no warnings."""
        result = normalizer.normalize("wfp", _csv(_price_rows(5)))

        assert result.ok
        record = result.record
        assert record.row_count == 5
        assert record.warnings == []
        assert record.schema_name == "food_prices"
        assert record.data[0] == {
            "date": date(2024, 1, 1),
            "market": "Gaza City",
            "price": 10.5,
            "unit": "KG",
        }

    def test_row_missing_required_field_skipped(self, normalizer):
        """One row without a required value gives N-1 rows and one warning."""
        rows = _price_rows(5)
        rows[2] = "2024-01-03,,12.5,KG"

        result = normalizer.normalize("wfp", _csv(rows))

        assert result.record.row_count == 4
        assert len(result.record.warnings) == 1
        assert "market" in result.record.warnings[0]

    def test_single_row_missing_required_field_fails(self, normalizer):
        """N=1 with the required value removed is a normalization error."""
        result = normalizer.normalize("wfp", _csv(["2024-01-01,,12.5,KG"]))

        assert not result.ok
        assert isinstance(result.error, NormalizationError)
        assert result.error.source_id == "wfp"
        assert len(result.error.warnings) == 1

    def test_invalid_required_value_skips_row(self, normalizer):
        rows = _price_rows(2) + ["2024-01-09,Rafah,free,KG"]

        record = normalizer.normalize("wfp", _csv(rows)).record

        assert record.row_count == 2
        assert "price" in record.warnings[0]

    def test_invalid_optional_value_becomes_none(self):
        schema = NormalizationSchema(
            name="counts",
            kind=PayloadKind.TABULAR_TEXT,
            fields=(
                FieldSpec("region", required=True),
                FieldSpec("count", FieldType.INTEGER),
            ),
        )
        normalizer = PayloadNormalizer({"x": schema})

        record = normalizer.normalize("x", b"region,count\nNorth,unknown\nSouth,12\n").record

        assert record.data == [{"region": "North", "count": None}, {"region": "South", "count": 12}]
        assert len(record.warnings) == 1

    def test_absent_optional_column_is_silent(self, normalizer):
        body = _csv(["2024-01-01,Gaza City,10.5"], header="date,market,price")

        record = normalizer.normalize("wfp", body).record

        assert record.data[0]["unit"] is None
        assert record.warnings == []

    def test_missing_required_column_fails(self, normalizer):
        body = _csv(["2024-01-01,10.5"], header="date,price")

        result = normalizer.normalize("wfp", body)

        assert isinstance(result.error, NormalizationError)
        assert "market" in str(result.error)

    def test_bom_and_blank_rows_tolerated(self, normalizer):
        body = b"\xef\xbb\xbf" + _csv(_price_rows(2)) + b"\n,,,\n"

        record = normalizer.normalize("wfp", body).record

        assert record.row_count == 2
        assert record.warnings == []

    def test_custom_delimiter_and_header_row(self):
        schema = NormalizationSchema(
            name="semi",
            kind=PayloadKind.TABULAR_TEXT,
            delimiter=";",
            header_row=2,
            fields=(FieldSpec("governorate", required=True), FieldSpec("idps", FieldType.INTEGER)),
        )
        body = "Source: OCHA\ngovernorate;idps\nGaza;1.234\nKhan Younis;\n".encode()
        normalizer = PayloadNormalizer({"ocha": schema})

        record = normalizer.normalize("ocha", body).record

        assert record.data[1] == {"governorate": "Khan Younis", "idps": None}

    def test_undecodable_payload_fails(self, normalizer):
        result = normalizer.normalize("wfp", b"\xff\xfe\x00bad")
        assert isinstance(result.error, NormalizationError)

    def test_header_only_fails(self, normalizer):
        result = normalizer.normalize("wfp", _csv([]))
        assert isinstance(result.error, NormalizationError)


class TestTree:
    """Tests for JSON payloads."""

    def test_nested_object_as_single_record(self, normalizer):
        body = json.dumps(
            {"gaza": {"killed": {"total": "34,000", "children": 14000}, "last_update": "2024-04-20"}}
        )

        record = normalizer.normalize("t4p", body).record

        assert record.data == [
            {"killed_total": 34000, "killed_children": 14000, "last_update": date(2024, 4, 20)}
        ]

    def test_list_index_in_records_path(self, normalizer):
        body = json.dumps(
            [
                {"page": 1, "pages": 1},
                [
                    {"date": "2022", "value": 19111.9, "country": {"value": "West Bank and Gaza"}},
                    {"date": "2021", "value": None, "country": {"value": "West Bank and Gaza"}},
                    {"date": "2020", "value": 15531.7, "country": {"value": "West Bank and Gaza"}},
                ],
            ]
        )

        record = normalizer.normalize("wb", body).record

        assert [row["year"] for row in record.data] == [2022, 2020]
        assert record.data[0]["country"] == "West Bank and Gaza"
        assert len(record.warnings) == 1

    def test_non_object_items_warned(self, normalizer):
        body = json.dumps([{}, [{"date": "2022", "value": 1.0}, "junk"]])

        record = normalizer.normalize("wb", body).record

        assert record.row_count == 1
        assert "expected an object" in record.warnings[0]

    def test_missing_records_path_fails(self, normalizer):
        result = normalizer.normalize("t4p", json.dumps({"west_bank": {}}))
        assert "gaza" in str(result.error)

    def test_invalid_json_fails(self, normalizer):
        result = normalizer.normalize("t4p", b"{not json")
        assert isinstance(result.error, NormalizationError)

    def test_scalar_at_records_path_fails(self, normalizer):
        result = normalizer.normalize("t4p", json.dumps({"gaza": 5}))
        assert isinstance(result.error, NormalizationError)

    def test_resolve_path(self):
        document = {"a": [{"b": 1}, {"b": 2}]}

        assert resolve_path(document, "a.1.b") == 2
        assert resolve_path(document, "a.-1.b") == 2
        assert resolve_path(document, "a.5.b") is None
        assert resolve_path(document, "a.x") is None
        assert resolve_path(document, "") is document


class TestSpreadsheet:
    """Tests for workbook payloads."""

    def test_named_sheet_with_header_row(self, normalizer):
        body = _workbook(
            {
                "Notes": [["ignore me"]],
                "Unemployment": [
                    ["Labour force survey"],
                    ["Region", "Year", "Rate"],
                    ["Gaza Strip", 2023, 45.1],
                    ["West Bank", 2023.0, "13.1"],
                    [None, None, None],
                    ["Total", None, 24.4],
                ],
            }
        )

        result = normalizer.normalize("pcbs", body)

        assert result.ok
        assert result.record.data == [
            {"region": "Gaza Strip", "year": 2023, "rate": 45.1},
            {"region": "West Bank", "year": 2023, "rate": 13.1},
        ]
        assert len(result.record.warnings) == 1

    def test_missing_sheet_fails(self, normalizer):
        body = _workbook({"Other": [["x"], ["Region", "Year", "Rate"], ["a", 1, 2]]})

        result = normalizer.normalize("pcbs", body)

        assert "Unemployment" in str(result.error)

    def test_active_sheet_by_default(self):
        schema = NormalizationSchema(
            name="simple",
            kind=PayloadKind.SPREADSHEET,
            fields=(FieldSpec("name", required=True),),
        )
        body = _workbook({"Data": [["name"], ["a"], ["b"]]})

        record = PayloadNormalizer({"s": schema}).normalize("s", body).record

        assert [row["name"] for row in record.data] == ["a", "b"]

    def test_not_a_workbook_fails(self, normalizer):
        result = normalizer.normalize("pcbs", b"PK\x03\x04 definitely not a zip")
        assert isinstance(result.error, NormalizationError)


class TestPayloadNormalizer:
    """Tests for the normalizer boundary."""

    def test_unknown_source(self, normalizer):
        result = normalizer.normalize("nobody", b"{}")

        assert isinstance(result.error, NormalizationError)
        assert result.error.source_id == "nobody"

    def test_uses_payload_timestamp(self, normalizer):
        fetched_at = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)
        payload = RawPayload(source_id="wfp", url="u", content=_csv(_price_rows(1)), fetched_at=fetched_at)

        record = normalizer.normalize("wfp", payload).record

        assert record.fetched_at == fetched_at
        assert record.source_id == "wfp"

    def test_register_and_schema_for(self, normalizer):
        assert normalizer.schema_for("new") is None
        normalizer.register("new", PRICES)
        assert normalizer.schema_for("new") is PRICES

    def test_unexpected_exception_contained(self, normalizer, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("strategy bug")

        monkeypatch.setattr("humdata.normalization.normalizer.build_rows", explode)

        result = normalizer.normalize("wfp", _csv(_price_rows(1)))

        assert isinstance(result.error, NormalizationError)
        assert isinstance(result.error.cause, RuntimeError)

    def test_records_metrics(self, normalizer, metrics):
        rows = _price_rows(2) + ["2024-01-09,,1,KG"]
        normalizer.normalize("wfp", _csv(rows))
        normalizer.normalize("wfp", b"")

        metrics.record_normalization.assert_any_call("wfp", failed=False, warnings=1)
        metrics.record_normalization.assert_any_call("wfp", failed=True, warnings=0)

    def test_result_unwrap(self, normalizer):
        assert isinstance(normalizer.normalize("wfp", _csv(_price_rows(1))).unwrap(), NormalizedRecord)
        with pytest.raises(NormalizationError):
            normalizer.normalize("wfp", b"").unwrap()

    def test_result_requires_one_outcome(self):
        with pytest.raises(ValueError):
            NormalizationResult(source_id="x")


class TestSchemas:
    """Tests for schema validation."""

    def test_rejects_duplicate_fields(self):
        with pytest.raises(ValueError):
            NormalizationSchema(
                name="dup",
                kind=PayloadKind.TREE,
                fields=(FieldSpec("a"), FieldSpec("a")),
            )

    def test_rejects_empty_fields(self):
        with pytest.raises(ValueError):
            NormalizationSchema(name="empty", kind=PayloadKind.TREE, fields=())

    def test_record_requires_rows(self):
        with pytest.raises(ValueError):
            NormalizedRecord(source_id="x", schema_name="s", data=[])

import io
from datetime import datetime

import pandas as pd
import pytest

from referrals.config import Settings
from referrals.data import (
    DecodedTable,
    TableDecodeError,
    accepted_file,
    clean_headers,
    find_header_row,
    ingest_upload,
    read_table,
)
from referrals.normalizer import EmptyTableError


def make_xlsx(rows, sheet_name="Referrals") -> bytes:
    buf = io.BytesIO()
    pd.DataFrame(rows).to_excel(buf, sheet_name=sheet_name, header=False, index=False)
    return buf.getvalue()


class TestAcceptedFile:
    @pytest.mark.parametrize("name", ["export.xlsx", "EXPORT.XLS", "referrals.csv"])
    def test_by_extension(self, name):
        assert accepted_file(name)

    def test_by_content_type(self):
        assert accepted_file("download", "text/csv")

    def test_rejected(self):
        assert not accepted_file("notes.txt", "text/plain")


class TestCleanHeaders:
    def test_blank_and_duplicate_headers(self):
        assert clean_headers(["A", None, "A", " ", " B "]) == ["A", "Unnamed: 1", "A.1", "Unnamed: 3", "B"]

    def test_generated_suffix_skips_existing_header(self):
        assert clean_headers(["A", "A.1", "A"]) == ["A", "A.1", "A.2"]
        assert clean_headers(["A", "A", "A.1"]) == ["A", "A.1", "A.1.1"]
        assert clean_headers(["A", "A", "A", "A"]) == ["A", "A.1", "A.2", "A.3"]


class TestFindHeaderRow:
    def test_skips_title_rows(self):
        raw = pd.DataFrame(
            [
                ["Monthly Referral Export", None],
                ["Generated 2024-02-01", None],
                ["Created Date", "Referring Doctor"],
                ["2024-01-15", "Dr. Smith"],
            ]
        )
        assert find_header_row(raw) == 2

    def test_defaults_to_first_row(self):
        raw = pd.DataFrame([["Notes", "Other"], ["a", "b"]])
        assert find_header_row(raw) == 0


class TestReadTableCsv:
    def test_basic_csv(self):
        raw = b"Created Date,Referring Doctor,Arrived Visits\n2024-01-15,Dr. Smith,4\n2024-01-16,Dr. Jones,\n"
        table = read_table(raw, "referrals.csv")
        assert table.headers == ["Created Date", "Referring Doctor", "Arrived Visits"]
        assert table.rows == [
            {"Created Date": "2024-01-15", "Referring Doctor": "Dr. Smith", "Arrived Visits": "4"},
            {"Created Date": "2024-01-16", "Referring Doctor": "Dr. Jones", "Arrived Visits": None},
        ]

    def test_latin1_csv(self):
        raw = "Created Date,Referring Doctor,Case Facility\n2024-01-15,Dr. Paul,Montréal\n".encode("latin-1")
        table = read_table(raw, "referrals.csv")
        assert table.rows[0]["Case Facility"] == "Montréal"

    def test_utf8_bom_not_in_header(self):
        raw = "Created Date,Doctor\n2024-01-15,Dr. A\n".encode("utf-8-sig")
        table = read_table(raw, "referrals.csv")
        assert table.headers[0] == "Created Date"

    def test_blank_lines_skipped(self):
        raw = b"Created Date,Doctor\n\n2024-01-15,Dr. A\n,\n"
        table = read_table(raw, "referrals.csv")
        assert len(table.rows) == 1

    def test_duplicate_headers_keep_every_column(self):
        raw = b"Created Date,Doctor,Note,Note.1,Note\n2024-01-15,Dr. A,x,y,z\n"
        table = read_table(raw, "referrals.csv")
        assert table.headers == ["Created Date", "Doctor", "Note", "Note.1", "Note.2"]
        assert [table.rows[0][h] for h in table.headers[2:]] == ["x", "y", "z"]

    def test_empty_csv_has_no_headers(self):
        assert read_table(b"", "empty.csv") == DecodedTable()


class TestReadTableExcel:
    def test_xlsx_with_title_row_and_native_dates(self):
        raw = make_xlsx(
            [
                ["Referral Export", None, None],
                ["Created Date", "Referring Doctor", "Arrived Visits"],
                [datetime(2024, 1, 15), "Dr. Smith", 3],
                [None, None, None],
                [datetime(2024, 1, 20), "Dr. Jones", None],
            ]
        )
        table = read_table(raw, "export.xlsx")
        assert table.sheet == "Referrals"
        assert table.headers == ["Created Date", "Referring Doctor", "Arrived Visits"]
        assert len(table.rows) == 2
        assert pd.Timestamp(table.rows[0]["Created Date"]) == pd.Timestamp("2024-01-15")
        assert table.rows[1]["Arrived Visits"] is None

    def test_unsupported_extension(self):
        with pytest.raises(TableDecodeError):
            read_table(b"hello", "notes.txt")

    def test_corrupt_workbook(self):
        with pytest.raises(TableDecodeError):
            read_table(b"this is not a workbook", "export.xlsx")


class TestIngestUpload:
    def test_xlsx_end_to_end(self, tmp_path):
        raw = make_xlsx(
            [
                ["Created Date", "Doctor", "Case Facility", "Scheduled Visits", "Referring Doctor NPI"],
                [datetime(2024, 1, 15), " Dr. Smith ", "North Clinic", 12, 1234567890],
                [None, "Dr. Jones", "South Clinic", 3, None],
            ]
        )
        result = ingest_upload(raw, "export.xlsx", Settings(data_dir=tmp_path))
        assert result.admitted_count == 1
        assert result.dropped_count == 1
        record = result.records[0]
        assert record.created_date == "2024-01-15"
        assert record.referring_doctor == "Dr. Smith"
        assert record.scheduled_visits == 12
        assert record.referring_doctor_npi == "1234567890"

    def test_empty_file_is_a_batch_failure(self, tmp_path):
        with pytest.raises(EmptyTableError):
            ingest_upload(b"", "empty.csv", Settings(data_dir=tmp_path))

    def test_header_only_file_is_valid_but_empty(self, tmp_path):
        result = ingest_upload(b"Created Date,Doctor\n", "referrals.csv", Settings(data_dir=tmp_path))
        assert result.records == []
        assert result.total_rows == 0

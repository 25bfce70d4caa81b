"""
Unit tests for batch building
"""

import io
import json
import logging

from extraction.batch import BatchBuilder
from extraction.sources.external import ExternalFileRowSource
from extraction.sources.generated import GeneratedFileRowSource


def generated_source(rows: str, expected: int = -1) -> GeneratedFileRowSource:
    content = (
        f"Expected Rows: {expected}\n<data start>\nid,amount\nID,DECIMAL\n"
        f"{rows}<data end>\n"
    )
    return GeneratedFileRowSource("ledger", io.StringIO(content))


class TestBatchBuilder:
    """Test draining row sources into batches"""

    def test_drains_small_source(self):
        """Test a source smaller than the cap yields one complete batch"""
        source = generated_source("1,10\n2,20.5\n")
        source.checksum = 99

        batch = BatchBuilder(max_rows=10).build(source)

        assert batch.rows == [["1", "10"], ["2", "20.5"]]
        assert batch.success_count == 2
        assert not batch.was_truncated
        assert batch.checksum == 99
        assert source.closed

    def test_cap_truncates_and_leaves_source_open(self):
        """Test hitting the row cap marks the batch truncated"""
        source = generated_source("1,1\n2,2\n3,3\n")
        source.checksum = 7
        builder = BatchBuilder(max_rows=2)

        first = builder.build(source)

        assert first.success_count == 2
        assert first.was_truncated
        assert first.checksum is None
        assert not source.closed

        second = builder.build(source)

        assert second.rows == [["3", "3"]]
        assert not second.was_truncated
        assert second.checksum == 7

    def test_bad_row_is_left_out(self, caplog):
        """Test a row with an unparseable cell is rejected on its own"""
        source = generated_source("1,10\n2,abc\n3,30\n")

        with caplog.at_level(logging.ERROR):
            batch = BatchBuilder(max_rows=10).build(source)

        assert batch.rows == [["1", "10"], ["3", "30"]]
        assert source.error_count == 1
        assert "Error handling data source row [2] with data [2]" in caplog.text
        assert 'column [amount], error is [Unparseable number: "abc"]' in caplog.text

    def test_rejected_rows_do_not_count_toward_cap(self):
        """Test the cap counts successful rows only"""
        source = generated_source("x,1\n1,1\ny,2\n2,2\n")

        batch = BatchBuilder(max_rows=2).build(source)

        assert batch.rows == [["1", "1"], ["2", "2"]]
        assert batch.was_truncated

    def test_error_budget_abandons_source(self, caplog):
        """Test too many rejected rows stop the source without a checksum"""
        source = generated_source("a,1\nb,1\nc,1\n4,4\n")
        source.checksum = 5

        with caplog.at_level(logging.ERROR):
            batch = BatchBuilder(max_rows=10, max_error_rows=1).build(source)

        assert source.aborted
        assert batch.success_count == 0
        assert batch.checksum is None
        assert "Too many errors" in caplog.text

    def test_external_rejects_are_quarantined(self, tmp_path, policy_schema):
        """Test shape and value failures both reach the bad file"""
        path = tmp_path / "policies.csv"
        path.write_text("policyNumber,premium\nP-1,10\nP-2,x\nP-3,1,2\n", encoding="utf-8")

        source = ExternalFileRowSource.from_path(path, policy_schema)
        batch = BatchBuilder(max_rows=10).build(source)

        assert [row[0] for row in batch.rows] == ["P-1"]
        assert source.error_count == 2
        bad = (tmp_path / "policies.csv.bad").read_text(encoding="utf-8")
        assert bad == "policyNumber,premium\nP-2,x\nP-3,1,2\n"

    def test_payload_keys(self):
        """Test batches serialize with the server's field names"""
        source = generated_source("1,10\n")

        payload = json.loads(BatchBuilder(max_rows=10).build(source).to_json())

        assert payload["name"] == "ledger"
        assert payload["rowCount"] == 1
        assert payload["wasCutShort"] is False
        assert payload["lakeOnly"] is False
        assert payload["queryTime"] == -1
        assert payload["columns"][0] == {"name": "id", "type": "ID", "formatString": None}
        assert payload["rows"] == [{"results": ["1", "10"]}]

"""
Pytest configuration and fixtures
"""

import json
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qs

import httpx
import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from extraction.columns import ColumnDefinition
from extraction.file_schema import ColumnRequirement, FileColumn, FileSchema
from upload.client import UploadClient
from upload.session import UploadSession

BASE_URL = "https://collector.test/dataextraction"
SUMMARY_COMMANDS = (2, 6, 13)


class FakeCollector:
    """
    In-process stand-in for the collection server, used as an httpx transport handler.

    Batches are acknowledged in full unless ``responder`` returns a response
    of its own for a batch.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.batches: List[Dict[str, Any]] = []
        self.summaries: List[Dict[str, Any]] = []
        self.file_definitions: List[Dict[str, Any]] = []
        self.clean_data = "true"
        self.responder: Optional[Callable[[Dict[str, Any], int], Optional[httpx.Response]]] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        command = int(request.url.params["command"])

        if request.method == "GET":
            return httpx.Response(200, text=self.clean_data)

        form = parse_qs(request.content.decode(), keep_blank_values=True)
        payload = json.loads(form["results"][0])

        if command in SUMMARY_COMMANDS:
            self.summaries.append(payload)
            return httpx.Response(200, text="ok")
        if command == 14:
            self.file_definitions.append(payload)
            return httpx.Response(200, text="ok")

        self.batches.append(payload)
        if self.responder is not None:
            response = self.responder(payload, len(self.batches))
            if response is not None:
                return response
        return make_ack(payload["rowCount"])

    @property
    def rows(self) -> List[List[str]]:
        return [row["results"] for batch in self.batches for row in batch["rows"]]


def make_ack(rows: int, message: str = "Upload successful", status_code: int = 200) -> httpx.Response:
    """Acknowledgment body in the server's format."""
    body = {"message": message, "rowsUploaded": rows, "success": status_code == 200}
    return httpx.Response(status_code, text=json.dumps(body))


@pytest.fixture
def ack():
    """Builder for acknowledgment responses"""
    return make_ack


@pytest.fixture
def collector():
    """Fake collection server"""
    return FakeCollector()


@pytest.fixture
def make_client(collector):
    """Factory for upload clients wired to the fake collector"""
    clients = []

    def factory(session: Optional[UploadSession] = None, **kwargs) -> UploadClient:
        kwargs.setdefault("max_rows", 2)
        kwargs.setdefault("max_file_rows", 2)
        kwargs.setdefault("max_attempts", 100)
        kwargs.setdefault("max_iterations", 100)
        kwargs.setdefault("http_client", httpx.Client(transport=httpx.MockTransport(collector)))
        client = UploadClient(
            session=session or UploadSession(max_run_time_seconds=0),
            base_url=BASE_URL,
            token="test-token",
            client_name="acme",
            **kwargs
        )
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.http.close()


@pytest.fixture
def source_engine():
    """In-memory SQLite source database with an orders table"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE orders ("
            "id INTEGER PRIMARY KEY, customer TEXT, amount NUMERIC, "
            "paid INTEGER, createTime TIMESTAMP)"
        ))
        conn.execute(
            text(
                "INSERT INTO orders (id, customer, amount, paid, createTime) "
                "VALUES (:id, :customer, :amount, :paid, :createTime)"
            ),
            [
                {"id": 1, "customer": "Alpha", "amount": 10.5, "paid": 1, "createTime": "2024-01-15 10:30:00"},
                {"id": 2, "customer": "Beta", "amount": 20, "paid": 0, "createTime": "2024-01-20 08:00:00"},
                {"id": 3, "customer": "Gamma", "amount": None, "paid": 1, "createTime": "2023-11-02 17:45:00"},
            ]
        )
    yield engine
    engine.dispose()


@pytest.fixture
def policy_schema():
    """File schema for a customer policy file"""
    return FileSchema("policies", [
        FileColumn.create(
            ColumnDefinition.from_tag("STRING", "policyNumber"),
            aliases=["Policy No", "policy_num"],
            requirement=ColumnRequirement.REQUIRED
        ),
        FileColumn.create(
            ColumnDefinition.from_tag("DECIMAL", "premium"),
            aliases=["Annual Premium"]
        ),
        FileColumn.create(
            ColumnDefinition.from_tag("DATE", "effectiveDate", "%Y-%m-%d"),
            aliases=["Effective"]
        ),
        FileColumn.create(
            ColumnDefinition.from_tag("STRING", "agentCode"),
            requirement=ColumnRequirement.OMITTED
        ),
    ])


GENERATED_FILE = (
    "Expected Rows: 3\n"
    "<data start>\n"
    "id,customer,amount,createTime\n"
    "ID,STRING,DECIMAL,DATETIME\n"
    "1,Alpha,10.5,20240115 10:30:00.000+0000\n"
    "2,Beta,20,20240120 08:00:00.000+0000\n"
    "3,Gamma,,20231102 17:45:00.000+0000\n"
    "<data end>\n"
    "Stats:\n"
    "Date of Run,Chunks,Total Query Time,Max Query Time,Processing Time,DB Name,Customer Code\n"
    "20240201 00:00:00,0,1,1,2,crm,acme\n"
)


@pytest.fixture
def generated_file(tmp_path):
    """A well-formed generated extract file with three rows"""
    path = tmp_path / "orders.csv"
    path.write_text(GENERATED_FILE, encoding="utf-8")
    return path

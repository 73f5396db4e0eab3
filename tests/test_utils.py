import base64
import json

import pytest

from app.utils import (
    DOCUMENT_ID_LENGTH,
    decode_service_account,
    generate_document_id,
    parse_data_url,
    to_camel_case,
    to_snake_case,
)


class TestDocumentIds:
    def test_shape(self):
        doc_id = generate_document_id()
        assert len(doc_id) == DOCUMENT_ID_LENGTH
        assert doc_id.isalnum()

    def test_unique(self):
        assert len({generate_document_id() for _ in range(1000)}) == 1000


class TestCaseConversion:
    @pytest.mark.parametrize(
        "camel,snake",
        [
            ("photoURL", "photo_url"),
            ("wearPercentage", "wear_percentage"),
            ("lastServiceDate", "last_service_date"),
            ("id", "id"),
            ("created_at", "created_at"),
        ],
    )
    def test_to_snake_case(self, camel, snake):
        assert to_snake_case(camel) == snake

    def test_to_camel_case(self):
        assert to_camel_case("last_service_date") == "lastServiceDate"
        assert to_camel_case("name") == "name"
        assert to_camel_case("_internal") == "_internal"


class TestDataUrls:
    def test_base64(self):
        decoded = parse_data_url("data:image/png;base64,iVBORw0K")
        assert decoded.content == b"\x89PNG\r\n"
        assert decoded.content_type == "image/png"

    def test_percent_encoded_defaults_to_text(self):
        decoded = parse_data_url("data:,Hello%2C%20World")
        assert decoded.content == b"Hello, World"
        assert decoded.content_type == "text/plain"

    @pytest.mark.parametrize(
        "value",
        ["", "https://example.com/a.png", "data:image/png;base64", "data:image/png;base64,@@@"],
    )
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_data_url(value)


class TestServiceAccount:
    def test_missing_padding_tolerated(self):
        account = {"type": "service_account", "project_id": "demo-project"}
        encoded = base64.b64encode(json.dumps(account).encode()).decode().rstrip("=")
        assert decode_service_account(encoded) == account

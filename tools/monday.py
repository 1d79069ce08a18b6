import itertools
import json
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from graph.classify import normalize_identifier
from tools.errors import IntegrationError


@dataclass
class ExternalRecord:
    """A monday.com item as seen by the bot."""
    id: str
    name: str
    identifier: str = ""
    phone: str = ""


FIND_ITEMS_QUERY = """
query ($board: [ID!], $limit: Int!, $columns: [String!]) {
  boards(ids: $board) {
    items_page(limit: $limit) {
      items { id name column_values(ids: $columns) { id text } }
    }
  }
}
"""

GET_ITEM_QUERY = """
query ($ids: [ID!]) {
  items(ids: $ids) { id name column_values { id text } }
}
"""

CREATE_ITEM_MUTATION = """
mutation ($board: ID!, $name: String!, $values: JSON!) {
  create_item(board_id: $board, item_name: $name, column_values: $values) { id }
}
"""

ADD_FILE_MUTATION = """
mutation ($item: ID!, $column: String!, $file: File!) {
  add_file_to_column(item_id: $item, column_id: $column, file: $file) { id }
}
"""


class MondayClient:
    """monday.com board client used as the bot's record store."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = os.getenv("MONDAY_API_KEY")
        self.board_id = os.getenv("MONDAY_BOARD_ID", "")
        self.identifier_column = os.getenv("MONDAY_IDENTIFIER_COLUMN", "rut")
        self.phone_column = os.getenv("MONDAY_PHONE_COLUMN", "telefono")
        self.files_column = os.getenv("MONDAY_FILES_COLUMN", "archivos")
        self.page_limit = int(os.getenv("MONDAY_PAGE_LIMIT", "500"))
        self.api_url = os.getenv("MONDAY_API_URL", "https://api.monday.com/v2")
        self.timeout = float(os.getenv("HTTP_TIMEOUT_SECONDS", "20"))
        self._transport = transport

        # Mock mode keeps created items in-process so lookups stay consistent
        self._mock_items: Dict[str, ExternalRecord] = {}
        self._mock_ids = itertools.count(1)

        if not self.api_key:
            logger.warning("No monday.com API key provided, using mock mode")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _get_headers(self) -> Dict[str, str]:
        return {"Authorization": self.api_key, "API-Version": "2024-01"}

    async def find_by_identifier(self, normalized_id: str) -> Optional[ExternalRecord]:
        """
        Scan the board's first page of items for a matching identifier.

        Args:
            normalized_id: Identifier already passed through ``normalize_identifier``

        Returns:
            First matching record in board order, or None
        """
        if not self.enabled:
            candidates = list(self._mock_items.values())
        else:
            data = await self._graphql(FIND_ITEMS_QUERY, {
                "board": [self.board_id],
                "limit": self.page_limit,
                "columns": [self.identifier_column, self.phone_column],
            })
            boards = data.get("boards") or []
            items = boards[0]["items_page"]["items"] if boards else []
            candidates = [self._to_record(item) for item in items]

        for record in candidates:
            if record.identifier and normalize_identifier(record.identifier) == normalized_id:
                logger.info(f"Found record {record.id} for identifier {normalized_id}")
                return record

        logger.info(f"No record among {len(candidates)} candidates for identifier {normalized_id}")
        return None

    async def get_record(self, record_id: str) -> Optional[ExternalRecord]:
        """Fetch a single item by id."""
        if not self.enabled:
            return self._mock_items.get(str(record_id))

        data = await self._graphql(GET_ITEM_QUERY, {"ids": [str(record_id)]})
        items = data.get("items") or []
        return self._to_record(items[0]) if items else None

    async def create(self, name: str, identifier: str, phone: str) -> str:
        """
        Create a new item on the board.

        Args:
            name: Item name (contact display name)
            identifier: RUT exactly as the contact typed it
            phone: Phone digits taken from the contact key

        Returns:
            The new item id
        """
        if not self.enabled:
            record_id = f"mock_{next(self._mock_ids)}"
            self._mock_items[record_id] = ExternalRecord(record_id, name, identifier, phone)
            logger.info(f"Mock mode: created record {record_id} for {name}")
            return record_id

        values = {self.identifier_column: identifier, self.phone_column: phone}
        data = await self._graphql(CREATE_ITEM_MUTATION, {
            "board": self.board_id,
            "name": name,
            "values": json.dumps(values),
        })
        item = data.get("create_item") or {}
        if "id" not in item:
            raise IntegrationError("monday", "create_item returned no id")
        record_id = str(item["id"])
        logger.info(f"Created record {record_id} for {name}")
        return record_id

    async def attach_file(self, record_id: str, content: bytes, filename: str) -> str:
        """
        Upload a file into the item's file column.

        Returns:
            The monday.com asset id
        """
        if not self.enabled:
            logger.info(f"Mock mode: would attach {filename} ({len(content)} bytes) to {record_id}")
            return "mock_asset"

        variables = {"item": str(record_id), "column": self.files_column}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.api_url}/file",
                    headers=self._get_headers(),
                    data={"query": ADD_FILE_MUTATION, "variables": json.dumps(variables)},
                    files={"variables[file]": (filename, content)},
                )
        except httpx.HTTPError as e:
            raise IntegrationError("monday", f"file upload failed: {e}") from e

        data = self._unwrap(response)
        asset = data.get("add_file_to_column") or {}
        if "id" not in asset:
            raise IntegrationError("monday", "add_file_to_column returned no id")
        asset_id = str(asset["id"])
        logger.info(f"Attached {filename} to record {record_id}: asset {asset_id}")
        return asset_id

    async def _graphql(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.api_url,
                    headers=self._get_headers(),
                    json={"query": query, "variables": variables},
                )
        except httpx.HTTPError as e:
            raise IntegrationError("monday", f"request failed: {e}") from e

        return self._unwrap(response)

    def _unwrap(self, response: httpx.Response) -> Dict[str, Any]:
        if response.status_code >= 400:
            raise IntegrationError(
                "monday",
                f"returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise IntegrationError("monday", f"invalid JSON response: {e}") from e
        if payload.get("errors"):
            raise IntegrationError("monday", f"graphql errors: {payload['errors']}")
        return payload.get("data") or {}

    def _to_record(self, item: Dict[str, Any]) -> ExternalRecord:
        columns = {c["id"]: c.get("text") or "" for c in item.get("column_values", [])}
        return ExternalRecord(
            id=str(item["id"]),
            name=item.get("name", ""),
            identifier=columns.get(self.identifier_column, ""),
            phone=re.sub(r"\D", "", columns.get(self.phone_column, "")),
        )


# Global monday.com client instance
monday_client = MondayClient()

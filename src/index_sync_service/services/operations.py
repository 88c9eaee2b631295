"""Batch write operations sent to the search indexing API.

A localized document becomes one operation: every field is copied into the
operation body verbatim, except the identifier field which is renamed to
``objectID``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from index_sync_service.errors import MalformedDocumentError
from shared.constants import DEFAULT_IDENTIFIER_FIELD, OBJECT_ID_FIELD


class OperationAction(str, Enum):
    """Batch write actions understood by the indexing API."""

    ADD_OBJECT = "addObject"
    UPDATE_OBJECT = "updateObject"
    DELETE_OBJECT = "deleteObject"


@dataclass(frozen=True)
class LocalizedDocument:
    """One record rendered for one locale."""

    locale: str
    fields: Mapping[str, Any]
    identifier_field: str = DEFAULT_IDENTIFIER_FIELD

    @property
    def identifier(self) -> Any:
        return self.fields.get(self.identifier_field)


# One LocalizedDocument per in-scope locale, all built from the same record
LocalizedDocumentSet = dict[str, LocalizedDocument]


@dataclass(frozen=True)
class Operation:
    """A single entry of a batch request."""

    action: OperationAction
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def object_id(self) -> Any:
        return self.body[OBJECT_ID_FIELD]

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action.value, "body": self.body}


def encode_operation(
    document: LocalizedDocument,
    action: OperationAction = OperationAction.ADD_OBJECT,
) -> Operation:
    """
    Encode a localized document as a batch operation.

    Args:
        document: Document to encode
        action: Batch action to perform

    Returns:
        Operation whose body carries ``objectID`` in place of the identifier field

    Raises:
        MalformedDocumentError: If the document has no identifier value
    """
    identifier = document.identifier
    if identifier is None or identifier == "":
        raise MalformedDocumentError(
            f"missing identifier field '{document.identifier_field}'",
            locale=document.locale,
        )

    body = {
        key: value
        for key, value in document.fields.items()
        if key != document.identifier_field
    }
    body[OBJECT_ID_FIELD] = identifier
    return Operation(action=action, body=body)

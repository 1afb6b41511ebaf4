"""
Typed CRM payloads and local -> remote field translation tables.

Each table is compiled once at import time. Translating a key that is not in
its table raises UnknownFieldError instead of passing the key through.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Optional

from taskbridge.crm.errors import UnknownFieldError


def compile_field_map(mapping: Dict[str, str]) -> MappingProxyType:
    """Freeze a translation table, rejecting blank or duplicate remote names."""
    seen = {}
    for local_name, remote_name in mapping.items():
        if not remote_name:
            raise ValueError(f"Empty CRM field name for {local_name!r}")
        if remote_name in seen:
            raise ValueError(
                f"CRM field {remote_name!r} mapped twice ({seen[remote_name]!r}, {local_name!r})"
            )
        seen[remote_name] = local_name
    return MappingProxyType(dict(mapping))


def translate(field_map, values: Dict[str, Any], drop_none: bool = False) -> Dict[str, Any]:
    """Rename local keys to CRM field names using a compiled table."""
    remote = {}
    for local_name, value in values.items():
        if local_name not in field_map:
            raise UnknownFieldError(local_name)
        if drop_none and value is None:
            continue
        remote[field_map[local_name]] = value
    return remote


TASK_FIELD_MAP = compile_field_map({
    "title": "TITLE",
    "description": "DESCRIPTION",
    "priority": "PRIORITY",
    "deadline": "DEADLINE",
    "status": "STATUS",
    "responsible_id": "RESPONSIBLE_ID",
    "file_refs": "UF_TASK_WEBDAV_FILES",
})

# Bitrix task priorities and statuses
PRIORITY_HIGH = "2"
PRIORITY_NORMAL = "1"
REMOTE_STATUS_COMPLETED = 5
REMOTE_STATUS_PENDING = 2

# Deal fields for imported returns. Custom UF_CRM_* codes belong to the
# target portal.
DEAL_FIELD_MAP = compile_field_map({
    "title": "TITLE",
    "amount": "OPPORTUNITY",
    "currency": "CURRENCY_ID",
    "close_date": "CLOSEDATE",
    "opened": "OPENED",
    "assigned_by_id": "ASSIGNED_BY_ID",
    "marketplace": "UF_CRM_1769125430993",
    "store_name": "UF_CRM_1767707826411",
    "tracking_number": "UF_CRM_1769468729223",
    "return_id": "UF_CRM_ID_1769468083222",
    "return_reason": "UF_CRM_1769468273095",
    "return_type": "UF_CRM_1769469291861",
    "platform_status": "UF_CRM_1769469412311",
    "product_sku": "UF_CRM_769468421997",
    "ad_title": "UF_CRM_1769468405476",
    "ad_id": "UF_CRM_1769468686576",
    "collection_date": "UF_CRM_1769611030661",
    "quantity": "UF_CRM_1769092781459",
    "shipping_method": "UF_CRM_1768915318859",
    "real_reason": "UF_CRM_1769473904030",
})


def file_ref(remote_file_id) -> str:
    """Disk file reference accepted by UF_TASK_WEBDAV_FILES."""
    return f"n{remote_file_id}"


@dataclass
class TaskPayload:
    """Task fields sent to the CRM on create/update."""
    title: str
    description: str = ""
    priority: bool = False
    deadline: Optional[str] = None
    responsible_id: Optional[int] = None
    status: Optional[str] = None
    remote_file_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_record(cls, record: Dict[str, Any], deadline: Optional[str], include_status: bool = False,
                    remote_file_ids: Optional[List[str]] = None) -> "TaskPayload":
        responsible = record.get("responsible_id")
        try:
            responsible = int(responsible) if responsible not in (None, "") else None
        except (TypeError, ValueError):
            responsible = None
        return cls(
            title=record.get("title") or "",
            description=record.get("description") or "",
            priority=bool(record.get("priority")),
            deadline=deadline,
            responsible_id=responsible,
            status=record.get("status") if include_status else None,
            remote_file_ids=list(remote_file_ids or []),
        )

    def to_remote(self) -> Dict[str, Any]:
        values = {
            "title": self.title,
            "description": self.description,
            "priority": PRIORITY_HIGH if self.priority else PRIORITY_NORMAL,
            "deadline": self.deadline,
            "responsible_id": self.responsible_id,
        }
        if self.status is not None:
            values["status"] = (
                REMOTE_STATUS_COMPLETED if self.status == "COMPLETED" else REMOTE_STATUS_PENDING
            )
        if self.remote_file_ids:
            values["file_refs"] = [file_ref(file_id) for file_id in self.remote_file_ids]
        return translate(TASK_FIELD_MAP, values)


@dataclass
class DealPayload:
    """A normalized import row ready to be created as a CRM deal."""
    order_id: str
    fields: Dict[str, Any]

    def to_remote(self) -> Dict[str, Any]:
        return translate(DEAL_FIELD_MAP, self.fields)

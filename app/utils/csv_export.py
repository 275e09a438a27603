"""CSV export utilities for admin listings."""

import csv
import io
from typing import Any

ADMIN_EXPORT_FIELDS = [
    "id",
    "name",
    "email",
    "phone",
    "role",
    "state",
    "branch",
    "zone",
    "is_active",
    "is_approved",
    "created_at",
    "disabled_at",
    "disable_reason",
]


def flatten_admin(admin: dict[str, Any]) -> dict[str, Any]:
    """
    Reduce a joined admin row to export columns.

    Jurisdiction ids are replaced by node names, which is what a reader of
    the spreadsheet expects to see.
    """
    return {
        "id": admin.get("id", ""),
        "name": admin.get("name", ""),
        "email": admin.get("email", ""),
        "phone": admin.get("phone") or "",
        "role": admin.get("role", ""),
        "state": admin.get("state_name") or "",
        "branch": admin.get("branch_name") or "",
        "zone": admin.get("zone_name") or "",
        "is_active": "yes" if admin.get("is_active") else "no",
        "is_approved": "yes" if admin.get("is_approved") else "no",
        "created_at": admin.get("created_at") or "",
        "disabled_at": admin.get("disabled_at") or "",
        "disable_reason": admin.get("disable_reason") or "",
    }


def admins_to_csv(admins: list[dict[str, Any]]) -> str:
    """
    Convert admin rows to CSV format.

    Returns:
        CSV string; the header row alone when there are no admins
    """
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=ADMIN_EXPORT_FIELDS)
    writer.writeheader()
    writer.writerows(flatten_admin(admin) for admin in admins)
    return output.getvalue()

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Header, HTTPException, status

ERROR_PERMISSION_DENIED = "permission-denied"
ERROR_UNAUTHENTICATED = "unauthenticated"


def _normalise_uid(raw: str | None) -> str | None:
    if not isinstance(raw, str):
        return None
    uid = raw.strip()
    return uid or None


@dataclass(slots=True)
class Principal:
    uid: str
    email: str | None = None

    def can_access(self, doc_id: str) -> bool:
        return self.uid == doc_id

    def require_document(self, doc_id: str) -> None:
        """Each account may only read and write its own document."""

        if self.can_access(doc_id):
            return
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": ERROR_PERMISSION_DENIED, "uid": self.uid, "document": doc_id},
        )


def principal_from_headers(uid_header: str | None, email_header: str | None = None) -> Principal | None:
    uid = _normalise_uid(uid_header)
    if uid is None:
        return None
    email = email_header.strip() if isinstance(email_header, str) and email_header.strip() else None
    return Principal(uid=uid, email=email)


async def principal_dependency(
    uid_header: str | None = Header(None, alias="X-User-ID"),
    email_header: str | None = Header(None, alias="X-User-Email"),
) -> Principal:
    principal = principal_from_headers(uid_header, email_header)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": ERROR_UNAUTHENTICATED},
        )
    return principal


__all__ = [
    "ERROR_PERMISSION_DENIED",
    "ERROR_UNAUTHENTICATED",
    "Principal",
    "principal_dependency",
    "principal_from_headers",
]

"""Retrieval of member content from the CM server."""

from __future__ import annotations

from cmsync.session import APISession, Command, TransportError
from cmsync.state.models import MemberRecord

VIEW_REVISION = "viewrevision"


class MemberFetcher:
    """Fetch the content of one member revision through an open session."""

    def __init__(self, session: APISession) -> None:
        self._session = session

    def fetch(self, record: MemberRecord) -> bytes:
        """Return the raw content of ``record`` at its revision.

        Raises:
            TransportError: If the command fails or returns no content.
        """
        command = Command(
            name=VIEW_REVISION,
            options={"project": record.config_path, "revision": record.revision},
            selection=[record.member_name or record.path],
        )
        response = self._session.run_command(command)
        if not response.work_items:
            raise TransportError(f"No content returned for {record.path}", command=VIEW_REVISION)
        content = response.work_items[0].get("content")
        if isinstance(content, str):
            return content.encode("utf-8")
        if isinstance(content, (bytes, bytearray)):
            return bytes(content)
        raise TransportError(f"No content returned for {record.path}", command=VIEW_REVISION)

"""JiraCliSource - TicketSource backed by the `jira` command line client."""

from __future__ import annotations

import json
import logging
import re
import subprocess
from datetime import datetime
from typing import Any

from ticketdeck.cache.models import (
    ActivityEntry,
    ActivityKind,
    Epic,
    Status,
    Ticket,
    TicketDetail,
)
from ticketdeck.logging import sanitize_for_log, truncate_output
from ticketdeck.source.exceptions import FetchError, MutateError, SourceError
from ticketdeck.source.models import (
    AddComment,
    Assign,
    CreateTicket,
    EditFields,
    EpicTree,
    MoveStatus,
    MutationCommand,
    MutationOutcome,
)

logger = logging.getLogger(__name__)

LIST_COLUMNS = "key,status,assignee,updated,summary"
EPIC_COLUMNS = "key,status,summary"
ISSUE_KEY_PATTERN = re.compile(r"\b([A-Z][A-Z0-9_]+-\d+)\b")
UNASSIGN_MARKER = "x"


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse the timestamp formats the jira client prints; None if unparseable."""
    if not value:
        return None
    text = value.strip()
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    for fmt in ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    logger.debug("Unparseable timestamp: %r", value)
    return None


def parse_ticket_line(line: str, base_url: str = "") -> Ticket | None:
    """Parse one tab-delimited listing line: key, status, assignee, updated, summary.

    Summary comes last so that tabs inside it cannot shift the other columns.
    """
    fields = [part.strip() for part in line.split("\t")]
    if len(fields) < 2 or not fields[0]:
        return None
    key = fields[0]
    if not ISSUE_KEY_PATTERN.fullmatch(key):
        return None
    assignee = fields[2] if len(fields) > 2 and fields[2] else None
    updated = parse_timestamp(fields[3]) if len(fields) > 3 else None
    summary = " ".join(f for f in fields[4:] if f)
    return Ticket(
        key=key,
        summary=summary,
        status=Status.parse(fields[1]),
        assignee=assignee,
        updated_at=updated,
        url=f"{base_url.rstrip('/')}/browse/{key}" if base_url else "",
    )


def _adf_text(node: Any) -> str:
    """Flatten an Atlassian document node to plain text."""
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return "".join(_adf_text(child) for child in node)
    if isinstance(node, dict):
        if node.get("type") == "text":
            return str(node.get("text", ""))
        text = _adf_text(node.get("content"))
        if node.get("type") in ("paragraph", "heading", "listItem"):
            return text + "\n"
        return text
    return str(node)


def _person(data: Any) -> tuple[str, str | None]:
    if not isinstance(data, dict):
        return "", None
    return str(data.get("displayName") or ""), data.get("emailAddress")


def parse_detail(key: str, payload: dict[str, Any]) -> TicketDetail:
    """Build a TicketDetail from `jira issue view --raw` JSON."""
    fields = payload.get("fields")
    if not isinstance(fields, dict):
        raise FetchError(f"No fields in detail response for {key}")

    assignee, assignee_email = _person(fields.get("assignee"))
    status_name = (fields.get("status") or {}).get("name")
    description = _adf_text(fields.get("description")).strip() or None

    activity: list[ActivityEntry] = []
    for comment in (fields.get("comment") or {}).get("comments", []):
        author, author_email = _person(comment.get("author"))
        activity.append(
            ActivityEntry(
                timestamp=str(comment.get("created", "")),
                author=author,
                author_email=author_email,
                kind=ActivityKind.COMMENT,
                body=_adf_text(comment.get("body")).strip(),
            )
        )
    for history in (payload.get("changelog") or {}).get("histories", []):
        author, author_email = _person(history.get("author"))
        for item in history.get("items", []):
            field_name = str(item.get("field", ""))
            kind = {
                "status": ActivityKind.STATUS_CHANGE,
                "assignee": ActivityKind.ASSIGNEE_CHANGE,
            }.get(field_name.lower(), ActivityKind.FIELD_CHANGE)
            activity.append(
                ActivityEntry(
                    timestamp=str(history.get("created", "")),
                    author=author,
                    author_email=author_email,
                    kind=kind,
                    field=field_name,
                    before=item.get("fromString"),
                    after=item.get("toString"),
                )
            )
    activity.sort(key=lambda entry: entry.timestamp, reverse=True)

    parent = fields.get("parent") or {}
    return TicketDetail(
        key=str(payload.get("key") or key),
        description=description,
        labels=frozenset(fields.get("labels") or []),
        activity=tuple(activity),
        status=Status.parse(status_name) if status_name else None,
        assignee=assignee or None,
        assignee_email=assignee_email,
        epic_key=parent.get("key"),
        updated_at=parse_timestamp(fields.get("updated")),
    )


class JiraCliSource:
    """TicketSource that shells out to the `jira` CLI.

    Every call blocks on a subprocess; callers run it from background
    threads only.
    """

    def __init__(self, command: str = "jira", base_url: str = "", timeout: float = 60.0) -> None:
        """Initialize the adapter.

        Args:
            command: Executable name or path of the jira client
            base_url: Jira base URL used to build browse links
            timeout: Seconds before a single invocation is abandoned
        """
        self.command = command
        self.base_url = base_url
        self.timeout = timeout

    def _run(self, *args: str) -> str:
        """Run the jira client and return stdout.

        Raises:
            SourceError: If the command is missing, times out or exits non-zero
        """
        cmdline = sanitize_for_log(" ".join([self.command, *args]))
        logger.debug("Running: %s", cmdline)
        try:
            result = subprocess.run(
                [self.command, *args],
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise SourceError(f"'{self.command}' not found on PATH") from e
        except subprocess.TimeoutExpired as e:
            raise SourceError(f"{cmdline} timed out after {self.timeout}s") from e
        except subprocess.CalledProcessError as e:
            stderr = truncate_output((e.stderr or "").strip(), max_length=500)
            raise SourceError(f"{cmdline} failed: {stderr}") from e
        return result.stdout.strip()

    def _fetch(self, *args: str) -> str:
        try:
            return self._run(*args)
        except SourceError as e:
            raise FetchError(str(e)) from e

    def _list(self, query: str, columns: str = LIST_COLUMNS) -> list[str]:
        output = self._fetch(
            "issue",
            "list",
            "-q",
            query,
            "--plain",
            "--no-headers",
            "--no-truncate",
            "--delimiter",
            "\t",
            "--columns",
            columns,
        )
        return [line for line in output.splitlines() if line.strip()]

    def fetch_current_user(self) -> str:
        email = self._fetch("me")
        if not email:
            raise FetchError("jira me returned no user")
        return email

    def fetch_by_query(self, query: str) -> list[Ticket]:
        tickets = []
        for line in self._list(query):
            ticket = parse_ticket_line(line, self.base_url)
            if ticket is not None:
                tickets.append(ticket)
        logger.info("Query returned %d ticket(s)", len(tickets))
        return tickets

    def fetch_epics(self, project: str) -> list[EpicTree]:
        epic_query = f'project = "{project}" AND issuetype = Epic ORDER BY key'
        trees = []
        for line in self._list(epic_query, columns=EPIC_COLUMNS):
            fields = [part.strip() for part in line.split("\t")]
            if not fields[0]:
                continue
            key = fields[0]
            title = " ".join(f for f in fields[2:] if f)
            try:
                children = [
                    child.with_changes(epic_key=key)
                    for child in self.fetch_by_query(f"parent = {key}")
                ]
            except FetchError as e:
                logger.warning("Failed to list children of %s: %s", key, e)
                children = []
            epic = Epic(key=key, title=title, child_keys=frozenset(c.key for c in children))
            trees.append(EpicTree(epic=epic, children=tuple(children)))
        logger.info("Fetched %d epic(s) for %s", len(trees), project)
        return trees

    def fetch_detail(self, key: str) -> TicketDetail:
        output = self._fetch("issue", "view", key, "--raw")
        try:
            payload = json.loads(output)
        except json.JSONDecodeError as e:
            raise FetchError(f"Failed to parse detail JSON for {key}: {e}") from e
        if not isinstance(payload, dict):
            raise FetchError(f"Unexpected detail payload for {key}")
        return parse_detail(key, payload)

    def mutate(self, command: MutationCommand) -> MutationOutcome:
        args = self._mutation_args(command)
        try:
            output = self._run(*args)
        except SourceError as e:
            raise MutateError(str(e)) from e

        if isinstance(command, CreateTicket):
            match = ISSUE_KEY_PATTERN.search(output)
            if not match:
                raise MutateError(f"Could not find the new ticket key in: {output!r}")
            key = match.group(1)
        else:
            key = command.key
        logger.info("Applied %s to %s", type(command).__name__, key)
        url = f"{self.base_url.rstrip('/')}/browse/{key}" if self.base_url else ""
        return MutationOutcome(key=key, url=url)

    def _mutation_args(self, command: MutationCommand) -> list[str]:
        match command:
            case MoveStatus(key=key, status=status, resolution=resolution):
                args = ["issue", "move", key, status.label]
                if resolution:
                    args += ["--resolution", resolution]
                return args
            case Assign(key=key, email=email):
                return ["issue", "assign", key, email or UNASSIGN_MARKER]
            case AddComment(key=key, body=body):
                return ["issue", "comment", "add", key, body, "--no-input"]
            case EditFields() as edit:
                args = ["issue", "edit", edit.key, "--no-input"]
                if edit.summary is not None:
                    args += ["--summary", edit.summary]
                if edit.description is not None:
                    args += ["--body", edit.description]
                for label in sorted(edit.labels or ()):
                    args += ["--label", label]
                for label in sorted(edit.removed_labels):
                    args += ["--label", f"-{label}"]
                return args
            case CreateTicket() as create:
                args = [
                    "issue",
                    "create",
                    "--project",
                    create.project,
                    "--type",
                    create.issue_type,
                    "--summary",
                    create.summary,
                    "--no-input",
                ]
                if create.description:
                    args += ["--body", create.description]
                if create.assignee_email:
                    args += ["--assignee", create.assignee_email]
                if create.epic_key:
                    args += ["--parent", create.epic_key]
                for label in sorted(create.labels):
                    args += ["--label", label]
                return args
            case _:
                raise MutateError(f"Unsupported mutation command: {command!r}")

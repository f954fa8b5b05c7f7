from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class AdRecord:
    """
    A single listing as extracted from a results page (pre-dedupe).

    `identifier` is the dedupe key (the ad's image URL). Every other field is
    display payload and is "" when the page did not carry it.
    """

    identifier: str
    link: str = ""
    address: str = ""
    description: str = ""
    floor: str = ""
    rooms: str = ""
    area: str = ""
    price: str = ""
    structure: str = ""

    def as_row(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class Topic:
    """One named listing search for a user."""

    name: str
    source_url: str
    enabled: bool = True


@dataclass(frozen=True)
class RunResult:
    topic: str
    new_records: tuple[AdRecord, ...] = ()


@dataclass
class TopicOutcome:
    """
    What happened to one topic in one run.
    - ok=False means the topic did not complete (fetch/persistence/other error).
    - new_records is empty for failed topics.
    """

    topic: str
    ok: bool
    new_records: tuple[AdRecord, ...] = ()
    scraped: int = 0
    export_path: str | None = None
    error: str | None = None

    def as_result(self) -> RunResult:
        return RunResult(topic=self.topic, new_records=self.new_records)

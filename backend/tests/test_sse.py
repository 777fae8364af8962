import json

import pytest

from ledgerly.models.tables import Statement
from ledgerly.services.sse import EventFormatter, ProgressStreamer, is_complete

from factories import add_transaction


def _events(chunks):
    parsed = []
    for chunk in chunks:
        event_line, data_line = chunk.strip().split("\n")
        parsed.append((event_line[len("event: "):], json.loads(data_line[len("data: "):])))
    return parsed


async def _statement(db, user, status, progress=None):
    statement = Statement(
        user_id=user.id,
        file_name="sep.csv",
        file_type="csv",
        status=status,
        meta={"parsing_progress": progress} if progress else {},
    )
    db.add(statement)
    await db.commit()
    await db.refresh(statement)
    return statement


def test_format_is_a_complete_sse_frame():
    frame = EventFormatter.format("progress", {"id": 1, "status": "processing"})
    assert frame == 'event: progress\ndata: {"id": 1, "status": "processing"}\n\n'


def test_is_complete():
    assert is_complete(Statement(status="parsed", meta={}))
    assert is_complete(Statement(status="processing", meta={"parsing_progress": {"status": "failed"}}))
    assert not is_complete(Statement(status="processing", meta={"parsing_progress": {"status": "parsing"}}))


@pytest.mark.asyncio
async def test_unknown_statement_yields_error(session_factory, user):
    streamer = ProgressStreamer(999, user.id, session_factory=session_factory, poll_interval=0)
    events = _events([chunk async for chunk in streamer.stream()])
    assert events == [("error", {"id": 999, "error": "Statement not found", "message": "Statement not found"})]


@pytest.mark.asyncio
async def test_other_users_statement_is_not_found(session_factory, db, user):
    statement = await _statement(db, user, "parsed")
    streamer = ProgressStreamer(statement.id, user.id + 1, session_factory=session_factory, poll_interval=0)
    [(event, _)] = _events([chunk async for chunk in streamer.stream()])
    assert event == "error"


@pytest.mark.asyncio
async def test_parsed_statement_completes_immediately(session_factory, db, user):
    statement = await _statement(db, user, "parsed", {"status": "completed", "processed": 2, "updated_at": "t1"})
    await add_transaction(db, user.id, "A", 1, statement_id=statement.id)
    await add_transaction(db, user.id, "B", 2, statement_id=statement.id)

    streamer = ProgressStreamer(statement.id, user.id, session_factory=session_factory, poll_interval=0)
    events = _events([chunk async for chunk in streamer.stream()])
    assert [name for name, _ in events] == ["progress", "complete"]
    assert events[1][1]["completed"] is True
    assert events[1][1]["transaction_count"] == 2
    assert events[1][1]["parsing_status"] == "completed"


@pytest.mark.asyncio
async def test_progress_changes_are_streamed(session_factory, db, user):
    statement = await _statement(db, user, "processing", {"status": "parsing", "processed": 0, "updated_at": "t1"})
    streamer = ProgressStreamer(statement.id, user.id, session_factory=session_factory, poll_interval=0)
    stream = streamer.stream()

    first = await stream.__anext__()
    statement.status = "parsed"
    statement.meta = {"parsing_progress": {"status": "completed", "processed": 40, "updated_at": "t2"}}
    await db.commit()
    rest = [chunk async for chunk in stream]

    events = _events([first, *rest])
    assert [name for name, _ in events] == ["progress", "progress", "complete"]
    assert events[1][1]["processed"] == 40


@pytest.mark.asyncio
async def test_stream_times_out(session_factory, db, user):
    statement = await _statement(db, user, "processing", {"status": "parsing", "updated_at": "t1"})
    ticks = iter([0.0, 301.0])
    streamer = ProgressStreamer(
        statement.id,
        user.id,
        session_factory=session_factory,
        poll_interval=0,
        max_duration=300,
        clock=lambda: next(ticks),
    )
    events = _events([chunk async for chunk in streamer.stream()])
    assert events[-1] == (
        "error",
        {"id": statement.id, "error": "Connection timeout", "message": "Progress stream timed out after 5 minutes"},
    )
